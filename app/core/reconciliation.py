"""Attribute reconciliation for user updates.

Only fields the request supplies with a non-empty value are compared against
the stored record. Differences are staged, written in a single directory call,
and returned as an ordered list of ChangeRecord. A rename of the common name,
when needed, runs after that write so a rename failure leaves the attribute
changes committed.
"""
from __future__ import annotations

import logging
from typing import Iterable, Optional

from app.core.directory.users import user_filter
from app.core.errors import NotFoundError, RemoteCommandFailed
from app.core.identifiers import display_name_for, variant_of_common_name
from app.core.models import ChangeRecord, IdentityRecord, UpdateUserRequest, UserUpdateResult
from app.core.ports import DirectoryStore, SchemaIntrospector

logger = logging.getLogger(__name__)

# (request attribute, record field) in evaluation order
PLAIN_FIELDS = (
    ("office", "office"),
    ("company", "company"),
    ("division", "division"),
    ("department", "department"),
    ("title", "title"),
    ("description", "description"),
)

# record field -> directory attribute name probed in the schema
EXTENDED_FIELDS = {
    "employee_number": "employeeNumber",
}

ACCOUNT_STATES = {"enabled": True, "disabled": False}


def _requested(value: Optional[str]) -> Optional[str]:
    """Return the requested value, or None when it means "leave unchanged"."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def is_in_container(distinguished_name: str, container: str) -> bool:
    """True when ``distinguished_name`` sits anywhere below ``container``."""
    if not container or not distinguished_name:
        return False
    return distinguished_name.lower().endswith("," + container.strip().lower())


class AttributeReconciler:
    """Computes and applies the minimal set of attribute changes.

    Args:
        directory: Directory Store used for writes, rename and manager lookup
        schema: Schema probe (usually a SchemaCache) for extended attributes
        allow_name_changes: Whether first/last name edits are applied
        disabled_container: DN of the disabled-accounts container
        optional_attributes: Extended attribute names that may be written
    """

    def __init__(
        self,
        directory: DirectoryStore,
        schema: SchemaIntrospector,
        allow_name_changes: bool = True,
        disabled_container: str = "",
        optional_attributes: Iterable[str] = ("employeeNumber",),
    ):
        self.directory = directory
        self.schema = schema
        self.allow_name_changes = allow_name_changes
        self.disabled_container = disabled_container
        self.optional_attributes = {name.lower() for name in optional_attributes}

    def reconcile(self, record: IdentityRecord, request: UpdateUserRequest) -> UserUpdateResult:
        """Apply ``request`` to ``record`` and return the final state with its changes.

        Raises:
            NotFoundError: If the record sits in the disabled-accounts container
            RemoteCommandFailed: If the attribute write or the rename fails
        """
        if is_in_container(record.distinguished_name, self.disabled_container):
            logger.info("Update rejected, account is in the disabled container | sam=%s | dn=%s",
                        record.short_name, record.distinguished_name)
            raise NotFoundError(f"User with employeeID '{request.employee_id}' not found.")

        changes: list[ChangeRecord] = []
        staged: dict[str, object] = {}
        new_common_name = None

        def stage(field: str, new_value: str) -> None:
            old_value = record.value_of(field)
            if old_value == new_value:
                return
            changes.append(ChangeRecord(field, old_value, new_value))
            staged[field] = new_value

        if self.allow_name_changes:
            new_common_name = self._stage_names(record, request, stage, changes)

        for request_attr, field in PLAIN_FIELDS:
            value = _requested(getattr(request, request_attr))
            if value is not None:
                stage(field, value)

        employee_number = _requested(request.employee_number)
        if employee_number is not None and self._extended_allowed("employee_number"):
            stage("employee_number", employee_number)

        manager_key = _requested(request.manager_employee_id)
        if manager_key is not None:
            manager_dn = self._resolve_manager(manager_key, record)
            if manager_dn:
                stage("manager", manager_dn)

        state = _requested(request.account_state)
        if state is not None:
            enabled = ACCOUNT_STATES.get(state.lower())
            if enabled is None:
                logger.info("Ignoring unknown account state | sam=%s | value=%s", record.short_name, state)
            elif enabled != record.enabled:
                changes.append(ChangeRecord("enabled", str(record.enabled).lower(), str(enabled).lower()))
                staged["enabled"] = enabled

        if not changes:
            logger.info("No attribute differences | sam=%s", record.short_name)
            return UserUpdateResult(user=record, changes=[])

        if staged:
            self.directory.write_attributes(record, staged)
            logger.info("Updated attributes | sam=%s | fields=%s", record.short_name, ",".join(staged))

        if new_common_name:
            self.directory.rename(record, new_common_name)

        updated = self.directory.find_by_unique_key("short_name", record.short_name)
        if updated is None:
            raise RemoteCommandFailed("read back", record.short_name, "record not found after update")
        return UserUpdateResult(user=updated, changes=changes)

    def _stage_names(self, record, request, stage, changes) -> Optional[str]:
        """Stage given/surname, display name and common name; return the new CN if it changes."""
        first = _requested(request.first_name)
        last = _requested(request.last_name)
        if first is None and last is None:
            return None

        before = len(changes)
        if first is not None:
            stage("given_name", first)
        if last is not None:
            stage("surname", last)
        if len(changes) == before:
            return None

        new_given = first if first is not None else record.given_name
        new_surname = last if last is not None else record.surname
        display_name = display_name_for(new_given, new_surname)
        stage("display_name", display_name)

        variant = variant_of_common_name(record.common_name, record.display_name)
        common_name = f"{display_name}{variant.suffix}"
        if common_name == record.common_name:
            return None
        changes.append(ChangeRecord("common_name", record.common_name, common_name))
        return common_name

    def _extended_allowed(self, field: str) -> bool:
        attribute = EXTENDED_FIELDS[field]
        if attribute.lower() not in self.optional_attributes:
            return False
        if not self.schema.has_attribute(attribute):
            logger.warning("Attribute not defined in schema, skipping | attribute=%s", attribute)
            return False
        return True

    def _resolve_manager(self, manager_key: str, record: IdentityRecord) -> Optional[str]:
        """Find the manager's DN by employeeID. Failure is logged, never raised."""
        try:
            manager = self.directory.find_by_filter(user_filter("employeeID", manager_key))
        except RemoteCommandFailed as exc:
            logger.warning("Manager lookup failed, manager unchanged | sam=%s | manager_employee_id=%s | error=%s",
                           record.short_name, manager_key, exc)
            return None
        if manager is None:
            logger.warning("Manager not found, manager unchanged | sam=%s | manager_employee_id=%s",
                           record.short_name, manager_key)
            return None
        return manager.distinguished_name
