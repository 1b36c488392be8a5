"""
Flask application factory for the storefront billing service.

Fails fast: a missing Stripe, database or session setting raises
ConfigurationError before any route is registered.
"""

import logging
import sys
from typing import Any, Dict, Optional

import click
import sentry_sdk
from flask import Flask
from sentry_sdk.integrations.flask import FlaskIntegration

from storefront.config import ConfigurationError, ReconcilerSettings, get_config
from storefront.error_handlers import register_error_handlers
from storefront.extensions import init_extensions
from storefront.logging_config import setup_logging
from storefront.middleware import init_request_id_middleware
from storefront.routes import register_blueprints
from storefront.security import setup_jwt_callbacks

logger = logging.getLogger(__name__)


def setup_sentry(app: Flask) -> None:
    """Initialize Sentry error tracking when a DSN is configured."""
    sentry_dsn = app.config.get("SENTRY_DSN")
    if not sentry_dsn:
        return

    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.1,
        environment=app.config.get("ENVIRONMENT"),
        send_default_pii=False,
    )
    logger.info("Sentry error tracking initialized")


def register_commands(app: Flask) -> None:
    @app.cli.command("seed-plans")
    def seed_plans_command():
        """Create or refresh the default plan catalogue."""
        from storefront.billing.plans import seed_plans

        plans = seed_plans()
        for plan in plans:
            click.echo(f"{plan.code}: {plan.limits}")


def create_app(config_name: Optional[str] = None, config_overrides: Optional[Dict[str, Any]] = None) -> Flask:
    """
    Application factory.

    Args:
        config_name: Configuration name (development, production, testing).
            Defaults to APP_ENV.
        config_overrides: Values applied on top of the config class.

    Raises:
        ConfigurationError: If a required setting is missing.
    """
    app = Flask(__name__)

    try:
        app.config.from_object(get_config(config_name))
        if config_overrides:
            app.config.update(config_overrides)
        app.config["RECONCILER_SETTINGS"] = ReconcilerSettings.from_mapping(app.config)
    except ConfigurationError as e:
        print(f"CRITICAL: Configuration error: {str(e)}", file=sys.stderr)
        raise

    setup_logging(app)
    logger.info(
        f"Starting application in {app.config.get('ENVIRONMENT')} mode",
        extra={"settings": repr(app.config["RECONCILER_SETTINGS"])},
    )

    setup_sentry(app)
    init_request_id_middleware(app)
    init_extensions(app)
    setup_jwt_callbacks()
    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    logger.info("Application initialized")
    return app
