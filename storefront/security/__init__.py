from storefront.security.auth import current_user_email, current_user_id, setup_jwt_callbacks

__all__ = ["current_user_email", "current_user_id", "setup_jwt_callbacks"]
