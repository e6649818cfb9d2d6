"""User provisioning endpoints (joiner, mover/leaver, lookup).

Architecture:
    /api/users -> app.core.provisioning_service -> app.core.directory -> Active Directory

All responses use the envelope ``{"success", "message", "data"}``. Errors are
raised as ProvisioningError and rendered by app.api.errors.
"""

from __future__ import annotations
import logging
from flask import Blueprint, request, jsonify, current_app, url_for, g

from app.core.errors import ValidationError
from app.core.models import CreateUserRequest, UpdateUserRequest

bp = Blueprint("users", __name__, url_prefix="/api/users")

# Configuration
JSON_MAX_SIZE_BYTES = 65536  # 64 KB

logger = logging.getLogger(__name__)


def get_service():
    """Provisioning service attached to the running app by create_app()."""
    return current_app.config["PROVISIONING_SERVICE"]


def envelope(data=None, message: str = "", success: bool = True) -> dict:
    return {"success": success, "message": message, "data": data}


def read_json_payload() -> dict:
    """Parse the request body as a JSON object.

    Raises:
        ValidationError: If the body is too large, not JSON, or not an object
    """
    if request.content_length and request.content_length > JSON_MAX_SIZE_BYTES:
        raise ValidationError("Request payload too large", status=413)
    payload = request.get_json(silent=True)
    if payload is None:
        raise ValidationError("Request body must be valid JSON")
    return payload


@bp.before_request
def remember_correlation_id():
    g.correlation_id = request.headers.get("X-Correlation-Id", "none")


@bp.after_request
def add_correlation_id(response):
    """Echo the caller's correlation ID for tracing."""
    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        response.headers["X-Correlation-Id"] = correlation_id
    return response


# ─────────────────────────────────────────────────────────────────────────────
# Endpoints
# ─────────────────────────────────────────────────────────────────────────────

@bp.route("", methods=["POST"])
def create_user():
    """Create a user. Returns 201 with the generated login and initial password."""
    create_request = CreateUserRequest.from_payload(read_json_payload())
    logger.info("Create user requested | employee_id=%s | correlation_id=%s",
                create_request.employee_id, g.correlation_id)

    result = get_service().create_user(create_request, operator="api")

    response = jsonify(envelope(result.to_dict(), "User created successfully"))
    response.status_code = 201
    response.headers["Location"] = url_for("users.get_user", sam_account_name=result.short_name)
    return response


@bp.route("", methods=["PUT"])
def update_user():
    """Update a user identified by employeeId; only changed fields are written."""
    update_request = UpdateUserRequest.from_payload(read_json_payload())
    logger.info("Update user requested | employee_id=%s | correlation_id=%s",
                update_request.employee_id, g.correlation_id)

    result = get_service().update_user(update_request, operator="api")

    message = "User updated successfully" if result.changes else "No changes detected"
    return jsonify(envelope(result.to_dict(), message)), 200


@bp.route("/<sam_account_name>", methods=["GET"])
def get_user(sam_account_name: str):
    record = get_service().get_user(sam_account_name)
    return jsonify(envelope(record.to_dict())), 200
