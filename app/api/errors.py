"""Error handlers for the application (JSON only)."""
from flask import jsonify
from werkzeug.exceptions import HTTPException

from app.core.errors import ProvisioningError


def _error_body(message: str) -> dict:
    return {"success": False, "message": message, "data": None}


def register_error_handlers(app):
    """Register error handlers with the Flask app."""

    @app.errorhandler(ProvisioningError)
    def provisioning_error(error: ProvisioningError):
        """Render taxonomy errors with their own status."""
        if error.status >= 500:
            app.logger.error("Provisioning failure: %s", error.detail)
        else:
            app.logger.info("Request rejected | status=%s | message=%s", error.status, error.detail)
        return jsonify(error.to_dict()), error.status

    @app.errorhandler(404)
    def not_found(error):
        """Handle 404 Not Found errors."""
        return jsonify(_error_body("Resource not found")), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify(_error_body("Method not allowed")), 405

    @app.errorhandler(Exception)
    def handle_exception(error):
        """Handle uncaught exceptions."""
        # Pass through HTTP errors
        if isinstance(error, HTTPException):
            return jsonify(_error_body(error.description or error.name)), error.code

        # ALWAYS log the error (even in production) - logs are secure
        app.logger.error(f"Unhandled exception: {error}", exc_info=True)
        return jsonify(_error_body("An unexpected error occurred")), 500
