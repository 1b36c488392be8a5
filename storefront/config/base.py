import os


class ConfigurationError(Exception):
    """
    Raised when an invalid or unsupported configuration is requested,
    or when a required setting is missing.
    """
    pass


class BaseConfig:
    """
    Base configuration shared by all environments.
    """

    # Flask
    DEBUG = False
    TESTING = False
    SECRET_KEY = os.getenv("SECRET_KEY")
    JSON_SORT_KEYS = False

    # Security
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Application
    APP_NAME = "Affiliate Storefront"
    ENVIRONMENT = "base"
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_REQUESTS = os.getenv("LOG_REQUESTS", "false").lower() == "true"
    SENTRY_DSN = os.getenv("SENTRY_DSN")

    # Backend service (Postgres behind the hosted backend)
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Sessions are issued by the hosted auth service; we only verify them
    JWT_SECRET_KEY = os.getenv("JWT_SECRET")
    JWT_ALGORITHM = "HS256"
    JWT_TOKEN_LOCATION = ["headers"]
    JWT_HEADER_NAME = "Authorization"
    JWT_HEADER_TYPE = "Bearer"
    # Hosted-auth session tokens carry aud "authenticated"; set JWT_AUDIENCE="" to skip the check
    JWT_DECODE_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated") or None
    JWT_ERROR_MESSAGE_KEY = "error"

    # Stripe
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION", "2022-11-15")
    STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))
    FREE_PLAN_CODE = "free"

    # CORS (API routes only)
    CORS_ORIGINS = os.getenv("FRONTEND_URL", "*")

    # Settings that must be present before the app will start
    REQUIRED_SETTINGS = (
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "SQLALCHEMY_DATABASE_URI",
        "JWT_SECRET_KEY",
    )
