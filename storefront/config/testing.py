from .base import BaseConfig


class TestingConfig(BaseConfig):
    """
    Test configuration. Every required setting gets a dummy value so the
    app factory can be exercised without a real environment.
    """

    TESTING = True
    ENVIRONMENT = "testing"

    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    JWT_SECRET_KEY = "test-jwt-secret-with-enough-length-for-hs256"
    JWT_DECODE_AUDIENCE = "authenticated"
    JWT_ENCODE_AUDIENCE = "authenticated"

    STRIPE_SECRET_KEY = "sk_test_mock"
    STRIPE_WEBHOOK_SECRET = "whsec_test_mock"
    CORS_ORIGINS = "*"
