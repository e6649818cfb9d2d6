"""Input validation helpers for API payloads."""
from __future__ import annotations

from typing import Any, Optional

from app.core.errors import ValidationError

MAX_FIELD_LENGTH = 256


def require_object(payload: Any) -> dict:
    """Ensure the request body is a JSON object.

    Raises:
        ValidationError: If payload is not a dict
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def require_string(data: dict, key: str) -> str:
    """Return a trimmed, non-empty string field.

    Args:
        data: Parsed JSON object
        key: Field name (camelCase, as sent by callers)

    Returns:
        Trimmed value

    Raises:
        ValidationError: If the field is missing, empty, not a string or too long
    """
    value = optional_string(data, key)
    if not value:
        raise ValidationError(f"{key} is required")
    return value


def optional_string(data: dict, key: str) -> Optional[str]:
    """Return a trimmed string field, or None when absent or null."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    if len(value) > MAX_FIELD_LENGTH:
        raise ValidationError(f"{key} exceeds maximum length")
    return value
