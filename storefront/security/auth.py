"""
Session verification for bearer tokens issued by the hosted auth service.

The service never issues tokens itself; flask-jwt-extended only verifies
them with the shared secret and exposes the caller's identity.
"""

import logging

from flask import jsonify
from flask_jwt_extended import get_jwt, get_jwt_identity

from storefront.extensions import jwt

logger = logging.getLogger(__name__)


def setup_jwt_callbacks():
    """Every token failure answers 401 with an ``{"error": ...}`` body."""

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({"error": "Token has expired"}), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        logger.warning("Invalid bearer token", extra={"reason": error})
        return jsonify({"error": "Invalid token"}), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({"error": "Unauthorized"}), 401

    logger.info("JWT callbacks configured")


def current_user_id():
    """Account id (``sub`` claim) of the verified caller."""
    return str(get_jwt_identity())


def current_user_email():
    claims = get_jwt()
    return claims.get("email")
