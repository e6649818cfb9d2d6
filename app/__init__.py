"""Identity provisioning Flask application package.

To use the Flask app:
    from app.flask_app import app

To use the provisioning service:
    from app.core.provisioning_service import ProvisioningService, build_service
"""
# Note: We don't import flask_app by default so the CLI can use app.core
# without building the HTTP application
