"""Error taxonomy for provisioning operations.

Every error carries the HTTP status the API layer should answer with:

    NotFoundError        404  lookup misses, disabled-container guard
    ConflictError        409  duplicate employeeId, identifier exhaustion
    RemoteCommandFailed  500  directory or mailbox command failure
    ValidationError      400  malformed API payload

``NotificationFailed`` is raised by notifiers only and is always caught by the
dispatcher; it never reaches a caller.
"""
from __future__ import annotations

from typing import Optional, Sequence


class ProvisioningError(Exception):
    """Base error with an HTTP status and a human-readable detail."""

    status = 500

    def __init__(self, detail: str, status: Optional[int] = None):
        if status is not None:
            self.status = status
        self.detail = detail
        super().__init__(detail)

    def to_dict(self) -> dict:
        """Convert to the API error envelope."""
        return {"success": False, "message": self.detail, "data": None}


class ValidationError(ProvisioningError):
    status = 400


class NotFoundError(ProvisioningError):
    status = 404


class ConflictError(ProvisioningError):
    status = 409


class DuplicateEmployeeIdError(ConflictError):
    """A record with the requested employeeId already exists."""

    def __init__(self, employee_id: str):
        self.employee_id = employee_id
        super().__init__(f"A user with employeeID '{employee_id}' already exists.")


class IdentifierExhausted(ConflictError):
    """Every generated short-name candidate is already taken."""

    def __init__(self, first_name: str, last_name: str, candidates: Sequence[str]):
        self.first_name = first_name
        self.last_name = last_name
        self.candidates = list(candidates)
        super().__init__(
            f"All generated sAMAccountName candidates for '{first_name} {last_name}' "
            f"are already taken ({', '.join(self.candidates)}). "
            "Please create the account manually."
        )


class RemoteCommandFailed(ProvisioningError):
    """A directory or mailbox command failed on the remote side."""

    status = 500

    def __init__(self, command: str, target: str, reason: str = ""):
        self.command = command
        self.target = target
        self.reason = reason
        message = f"Command '{command}' failed for '{target}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NotificationFailed(Exception):
    """Delivery of a notification failed. Logged and dropped."""

    def __init__(self, to_address: str, subject: str, reason: str = ""):
        self.to_address = to_address
        self.subject = subject
        self.reason = reason
        super().__init__(f"Failed to send '{subject}' to {to_address}: {reason}")
