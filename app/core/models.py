"""Data model shared by the provisioning core and the API layer."""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Optional

from app.core import validators


@dataclass
class IdentityRecord:
    """A provisioned account as read from the directory."""

    short_name: str
    employee_id: str = ""
    distinguished_name: str = ""
    given_name: str = ""
    surname: str = ""
    display_name: str = ""
    common_name: str = ""
    principal_name: str = ""
    email: str = ""
    office: str = ""
    company: str = ""
    division: str = ""
    department: str = ""
    title: str = ""
    description: str = ""
    manager: str = ""
    employee_number: str = ""
    enabled: bool = True
    account_control: int = field(default=512, repr=False)

    def value_of(self, name: str) -> str:
        """Return a stored attribute as a string, absent values as ''."""
        value = getattr(self, name, None)
        if value is None:
            return ""
        return str(value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "samAccountName": self.short_name,
            "userPrincipalName": self.principal_name,
            "employeeId": self.employee_id,
            "employeeNumber": self.employee_number or None,
            "firstName": self.given_name or None,
            "lastName": self.surname or None,
            "displayName": self.display_name,
            "commonName": self.common_name,
            "email": self.email or None,
            "office": self.office or None,
            "department": self.department or None,
            "company": self.company or None,
            "division": self.division or None,
            "title": self.title or None,
            "manager": self.manager or None,
            "description": self.description or None,
            "isEnabled": self.enabled,
            "distinguishedName": self.distinguished_name,
        }


@dataclass(frozen=True)
class ChangeRecord:
    """A single field change made during an update."""

    field: str
    old_value: Optional[str]
    new_value: Optional[str]

    def to_dict(self) -> dict[str, Optional[str]]:
        return {"field": self.field, "oldValue": self.old_value, "newValue": self.new_value}


@dataclass
class CreateUserRequest:
    employee_id: str
    first_name: str
    last_name: str
    office: Optional[str] = None
    company: Optional[str] = None
    division: Optional[str] = None
    department: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    manager_employee_id: Optional[str] = None
    employee_number: Optional[str] = None
    target_ou: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "CreateUserRequest":
        """Build a request from a camelCase JSON payload.

        Raises:
            ValidationError: If a required field is missing or a value is not a string
        """
        data = validators.require_object(payload)
        return cls(
            employee_id=validators.require_string(data, "employeeId"),
            first_name=validators.require_string(data, "firstName"),
            last_name=validators.require_string(data, "lastName"),
            office=validators.optional_string(data, "office"),
            company=validators.optional_string(data, "company"),
            division=validators.optional_string(data, "division"),
            department=validators.optional_string(data, "department"),
            title=validators.optional_string(data, "title"),
            description=validators.optional_string(data, "description"),
            manager_employee_id=validators.optional_string(data, "managerEmployeeId"),
            employee_number=validators.optional_string(data, "employeeNumber"),
            target_ou=validators.optional_string(data, "targetOu"),
        )


@dataclass
class UpdateUserRequest:
    """Requested changes for an existing record.

    ``None`` and ``""`` both mean "leave unchanged".
    """

    employee_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    office: Optional[str] = None
    company: Optional[str] = None
    division: Optional[str] = None
    department: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    manager_employee_id: Optional[str] = None
    employee_number: Optional[str] = None
    account_state: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "UpdateUserRequest":
        data = validators.require_object(payload)
        return cls(
            employee_id=validators.require_string(data, "employeeId"),
            first_name=validators.optional_string(data, "firstName"),
            last_name=validators.optional_string(data, "lastName"),
            office=validators.optional_string(data, "office"),
            company=validators.optional_string(data, "company"),
            division=validators.optional_string(data, "division"),
            department=validators.optional_string(data, "department"),
            title=validators.optional_string(data, "title"),
            description=validators.optional_string(data, "description"),
            manager_employee_id=validators.optional_string(data, "managerEmployeeId"),
            employee_number=validators.optional_string(data, "employeeNumber"),
            account_state=validators.optional_string(data, "userAccountControl"),
        )


@dataclass
class CreateUserResult:
    employee_id: str
    short_name: str
    email: str
    principal_name: str
    display_name: str
    common_name: str
    distinguished_name: str
    password: str = field(repr=False)
    status: str = "created"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "employeeId": self.employee_id,
            "samAccountName": self.short_name,
            "email": self.email,
            "userPrincipalName": self.principal_name,
            "displayName": self.display_name,
            "commonName": self.common_name,
            "distinguishedName": self.distinguished_name,
            "password": self.password,
        }


@dataclass
class UserUpdateResult:
    """Record state after an update plus the fields that actually changed.

    An empty ``changes`` list means every submitted value matched the stored
    one and no write was performed.
    """

    user: IdentityRecord
    changes: list[ChangeRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user": self.user.to_dict(),
            "changes": [change.to_dict() for change in self.changes],
        }


@dataclass
class MailboxResult:
    short_name: str
    mailbox_enabled: bool
    was_already_enabled: bool
    status: str

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "samAccountName": data["short_name"],
            "mailboxEnabled": data["mailbox_enabled"],
            "wasAlreadyEnabled": data["was_already_enabled"],
            "status": data["status"],
        }
