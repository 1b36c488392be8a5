"""
Flask extensions initialization module.
"""

import logging

from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
jwt = JWTManager()
cors = CORS()

logger = logging.getLogger(__name__)


def init_extensions(app):
    """Initialize all Flask extensions."""

    db.init_app(app)
    logger.info("SQLAlchemy initialized")

    jwt.init_app(app)
    logger.info("JWT Manager initialized")

    init_cors(app)
    logger.info("CORS initialized for API routes")

    if app.config.get("ENVIRONMENT") == "development" or app.config.get("CREATE_TABLES_ON_START", False):
        create_tables(app)

    return app


def init_cors(app):
    """Initialize CORS for /api/* only."""
    cors.init_app(
        app,
        resources={
            r"/api/*": {
                "origins": app.config.get("CORS_ORIGINS", "*"),
                "allow_headers": ["authorization", "x-client-info", "apikey", "content-type"],
                "methods": ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
                "max_age": 600,
                "send_wildcard": True,
            }
        },
    )


def create_tables(app):
    """Create database tables (development only)."""
    # Models must be imported so their tables are registered on the metadata
    from storefront import models  # noqa: F401

    with app.app_context():
        db.create_all()
        logger.info("Database tables created")
