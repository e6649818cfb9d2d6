"""Exchange mailbox endpoints."""

from __future__ import annotations
import logging
from flask import Blueprint, jsonify

from app.api.users import envelope, get_service, read_json_payload
from app.core import validators

bp = Blueprint("mailbox", __name__, url_prefix="/api/exchange/mailbox")

logger = logging.getLogger(__name__)


def _sam_from_body() -> str:
    data = validators.require_object(read_json_payload())
    return validators.require_string(data, "samAccountName")


@bp.route("/enable", methods=["POST"])
def enable_mailbox():
    """Ensure the mailbox exists and is reachable; sends the welcome mail."""
    sam = _sam_from_body()
    result = get_service().enable_mailbox(sam, operator="api")
    message = "Mailbox already enabled" if result.was_already_enabled else "Mailbox enabled successfully"
    return jsonify(envelope(result.to_dict(), message)), 200


@bp.route("/disable", methods=["POST"])
def disable_mailbox():
    sam = _sam_from_body()
    result = get_service().disable_mailbox(sam, operator="api")
    return jsonify(envelope(result.to_dict(), "Mailbox disabled successfully")), 200
