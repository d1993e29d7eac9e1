"""Error handlers for the application.

Every error is rendered as ``{"error", "message"}`` JSON. Messages of
DirectoryError subclasses below 500 are passed through; 500-class
responses never include internal text.
"""
import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException

from directory_hub.core.exceptions import DirectoryError

logger = logging.getLogger(__name__)

GENERIC_500 = {"error": "Internal Server Error", "message": "An unexpected error occurred"}


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(DirectoryError)
    def handle_directory_error(error: DirectoryError):
        if error.status >= 500:
            logger.error("%s: %s", error.__class__.__name__, error.message)
            # Upstream messages describe the remote response only
            if error.status == 502:
                return jsonify({"error": "Bad Gateway", "message": error.message}), 502
            return jsonify(GENERIC_500), error.status
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(400)
    def bad_request(error):
        """Handle 400 Bad Request errors."""
        return jsonify({"error": "Bad Request", "message": _description(error, "Invalid request")}), 400

    @app.errorhandler(401)
    def unauthorized(error):
        return jsonify({"error": "Unauthorized", "message": "Authentication required"}), 401

    @app.errorhandler(403)
    def forbidden(error):
        return jsonify({"error": "Forbidden", "message": "Insufficient permissions"}), 403

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not Found", "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({"error": "Method Not Allowed", "message": "Method not allowed for this resource"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        """Handle 500 Internal Server Error."""
        logger.error("Internal error: %s", error, exc_info=True)
        return jsonify(GENERIC_500), 500

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return jsonify({"error": error.name, "message": _description(error, error.name)}), error.code

        logger.error("Unhandled exception: %s", error.__class__.__name__, exc_info=True)
        return jsonify(GENERIC_500), 500


def _description(error, default: str) -> str:
    description = getattr(error, "description", None)
    return str(description) if description else default
