from dataclasses import dataclass
from typing import Any, Mapping, Optional

from .base import ConfigurationError


@dataclass(frozen=True)
class ReconcilerSettings:
    """
    Billing credentials and knobs handed to the webhook interpreter, the
    Stripe gateway and the feature gate at construction time.

    Built once by the app factory from the Flask config; nothing downstream
    reads the environment.
    """

    stripe_secret_key: str
    stripe_webhook_secret: str
    database_url: str
    jwt_secret: str
    stripe_api_version: str = "2022-11-15"
    webhook_tolerance: int = 300
    free_plan_code: str = "free"

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "ReconcilerSettings":
        """Build settings from a Flask config, failing on missing values."""
        required = config.get("REQUIRED_SETTINGS") or (
            "STRIPE_SECRET_KEY",
            "STRIPE_WEBHOOK_SECRET",
            "SQLALCHEMY_DATABASE_URI",
            "JWT_SECRET_KEY",
        )
        missing = [key for key in required if not config.get(key)]
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}"
            )

        return cls(
            stripe_secret_key=config["STRIPE_SECRET_KEY"],
            stripe_webhook_secret=config["STRIPE_WEBHOOK_SECRET"],
            database_url=config["SQLALCHEMY_DATABASE_URI"],
            jwt_secret=config["JWT_SECRET_KEY"],
            stripe_api_version=config.get("STRIPE_API_VERSION") or "2022-11-15",
            webhook_tolerance=int(config.get("STRIPE_WEBHOOK_TOLERANCE") or 300),
            free_plan_code=config.get("FREE_PLAN_CODE") or "free",
        )

    def __repr__(self) -> str:
        """Safe string representation hiding secrets."""
        return (
            f"<ReconcilerSettings stripe_key={_mask(self.stripe_secret_key)} "
            f"api_version={self.stripe_api_version}>"
        )


def _mask(value: Optional[str]) -> str:
    if not value:
        return "unset"
    return value[:7] + "..."
