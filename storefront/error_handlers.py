import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from storefront.errors import DomainError

logger = logging.getLogger(__name__)


def register_error_handlers(app):
    """Register all error handlers for the application. Every body is ``{"error": message}``."""

    @app.errorhandler(DomainError)
    def handle_domain_error(error):
        if error.status_code >= 500:
            logger.error(f"{error.__class__.__name__}: {error.message} - Path: {request.path}")
        else:
            logger.warning(f"{error.__class__.__name__}: {error.message} - Path: {request.path}")
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        return response

    @app.errorhandler(404)
    def not_found(e):
        logger.info(f"Not found: {request.path}")
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        logger.warning(f"Method not allowed: {request.method} {request.path}")
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(HTTPException)
    def http_error(e):
        logger.warning(f"HTTP error {e.code}: {e.name} - Path: {request.path}")
        return jsonify({"error": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def unhandled_error(e):
        logger.exception(f"Unhandled error - Path: {request.path}")
        return jsonify({"error": "An internal server error occurred"}), 500
