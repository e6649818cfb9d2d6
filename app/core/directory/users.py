"""User and group operations against Active Directory."""
from __future__ import annotations

import logging
import re
from typing import Mapping, Optional

from ldap3 import BASE, MODIFY_ADD, MODIFY_REPLACE
from ldap3.utils.conv import escape_filter_chars
from ldap3.core.exceptions import LDAPException
from ldap3.utils.dn import escape_rdn

from app.core.directory.client import RESULT_ATTRIBUTE_OR_VALUE_EXISTS, DirectoryClient
from app.core.errors import RemoteCommandFailed
from app.core.models import IdentityRecord

logger = logging.getLogger(__name__)

# IdentityRecord field -> AD attribute
ATTRIBUTE_MAP = {
    "short_name": "sAMAccountName",
    "employee_id": "employeeID",
    "given_name": "givenName",
    "surname": "sn",
    "display_name": "displayName",
    "common_name": "cn",
    "principal_name": "userPrincipalName",
    "email": "mail",
    "office": "physicalDeliveryOfficeName",
    "company": "company",
    "division": "division",
    "department": "department",
    "title": "title",
    "description": "description",
    "manager": "manager",
    "employee_number": "employeeNumber",
}

KEY_ATTRIBUTES = {
    "short_name": "sAMAccountName",
    "employee_id": "employeeID",
}

USER_OBJECT_CLASSES = ["top", "person", "organizationalPerson", "user"]
USER_FILTER = "(&(objectClass=user)(objectCategory=person)%s)"

UAC_NORMAL_ACCOUNT = 0x0200
UAC_ACCOUNTDISABLE = 0x0002


def user_filter(attribute: str, value: str) -> str:
    """Build an escaped equality filter restricted to person objects."""
    return USER_FILTER % f"({attribute}={escape_filter_chars(value)})"


def parent_dn(dn: str) -> str:
    """Return the container part of a DN, honouring escaped commas."""
    parts = re.split(r"(?<!\\),", dn, maxsplit=1)
    return parts[1] if len(parts) == 2 else ""


def _first(value) -> str:
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    if value is None:
        return ""
    return str(value)


def record_from_entry(dn: str, attributes: Mapping[str, object]) -> IdentityRecord:
    """Convert an ldap3 search entry into an IdentityRecord."""
    values = {field: _first(attributes.get(attr)) for field, attr in ATTRIBUTE_MAP.items()}
    raw_uac = _first(attributes.get("userAccountControl"))
    try:
        account_control = int(raw_uac) if raw_uac else UAC_NORMAL_ACCOUNT
    except ValueError:
        account_control = UAC_NORMAL_ACCOUNT
    return IdentityRecord(
        distinguished_name=dn or _first(attributes.get("distinguishedName")),
        enabled=not account_control & UAC_ACCOUNTDISABLE,
        account_control=account_control,
        **values,
    )


class UserDirectory:
    """Directory Store backed by ldap3.

    Each call opens its own bound connection, so an instance can be shared
    between request threads.
    """

    def __init__(self, client: DirectoryClient):
        self.client = client
        self.attributes = list(ATTRIBUTE_MAP.values()) + ["distinguishedName", "userAccountControl"]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_unique_key(self, key_type: str, key: str) -> Optional[IdentityRecord]:
        if key_type == "distinguished_name":
            with self.client.connection() as conn:
                entries = self.client.search(
                    conn, key, "(objectClass=user)", self.attributes, scope=BASE
                )
            return record_from_entry(*entries[0]) if entries else None

        attribute = KEY_ATTRIBUTES.get(key_type)
        if attribute is None:
            raise ValueError(f"Unsupported key type: {key_type}")
        return self.find_by_filter(user_filter(attribute, key))

    def find_by_filter(self, filter_expression: str, container: Optional[str] = None) -> Optional[IdentityRecord]:
        """Return the first matching record under ``container`` (domain-wide when None)."""
        base = container or self.client.base_dn
        with self.client.connection() as conn:
            entries = self.client.search(conn, base, filter_expression, self.attributes)
        if not entries:
            return None
        if len(entries) > 1:
            logger.warning("Filter matched several entries, using first | filter=%s | count=%d",
                           filter_expression, len(entries))
        return record_from_entry(*entries[0])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, container: str, fields: Mapping[str, str], password: str) -> IdentityRecord:
        """Create an enabled user with its initial password.

        The account is added disabled, the password is set, then the account
        is enabled. ``fields`` is keyed by IdentityRecord field name or raw AD
        attribute name; empty values are not written.

        Raises:
            ConflictError: If an entry with the same DN already exists
            RemoteCommandFailed: On any other directory failure
        """
        common_name = fields.get("common_name", "")
        short_name = fields.get("short_name", "")
        dn = f"CN={escape_rdn(common_name)},{container}"

        attributes = {}
        for name, value in fields.items():
            if value in (None, ""):
                continue
            attributes[ATTRIBUTE_MAP.get(name, name)] = value
        attributes["userAccountControl"] = UAC_NORMAL_ACCOUNT | UAC_ACCOUNTDISABLE

        with self.client.connection() as conn:
            self.client.call(conn, "add", dn, conn.add, dn, USER_OBJECT_CLASSES, attributes)
            self.client.call(
                conn, "set password", short_name or dn,
                conn.extend.microsoft.modify_password, dn, password,
            )
            self.client.call(
                conn, "enable", short_name or dn, conn.modify, dn,
                {"userAccountControl": [(MODIFY_REPLACE, [UAC_NORMAL_ACCOUNT])]},
            )

        logger.info("Created directory entry | dn=%s | sam=%s", dn, short_name)
        record = self.find_by_unique_key("distinguished_name", dn)
        if record is None:
            raise RemoteCommandFailed("read back", dn, "entry not found after create")
        return record

    def write_attributes(self, record: IdentityRecord, fields: Mapping[str, object]) -> None:
        """Replace the given attributes in one modify call.

        The ``enabled`` key toggles the disable bit of userAccountControl.
        """
        if not fields:
            return
        changes = {}
        for name, value in fields.items():
            if name == "enabled":
                uac = record.account_control or UAC_NORMAL_ACCOUNT
                uac = uac & ~UAC_ACCOUNTDISABLE if value else uac | UAC_ACCOUNTDISABLE
                changes["userAccountControl"] = [(MODIFY_REPLACE, [uac])]
                continue
            attribute = ATTRIBUTE_MAP.get(name, name)
            changes[attribute] = [(MODIFY_REPLACE, [value] if value not in (None, "") else [])]

        with self.client.connection() as conn:
            self.client.call(
                conn, "modify", record.short_name or record.distinguished_name,
                conn.modify, record.distinguished_name, changes,
            )
        logger.debug("Wrote attributes | sam=%s | attributes=%s", record.short_name, sorted(changes))

    def rename(self, record: IdentityRecord, new_common_name: str) -> str:
        """Change the record's CN in place and return the new DN."""
        rdn = f"CN={escape_rdn(new_common_name)}"
        with self.client.connection() as conn:
            self.client.call(
                conn, "rename", record.short_name or record.distinguished_name,
                conn.modify_dn, record.distinguished_name, rdn,
            )
        parent = parent_dn(record.distinguished_name)
        new_dn = f"{rdn},{parent}" if parent else rdn
        logger.info("Renamed directory entry | old_dn=%s | new_dn=%s", record.distinguished_name, new_dn)
        return new_dn

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def _find_group_dn(self, conn, group_name: str) -> Optional[str]:
        escaped = escape_filter_chars(group_name)
        group_filter = f"(&(objectClass=group)(|(cn={escaped})(sAMAccountName={escaped})))"
        entries = self.client.search(conn, self.client.base_dn, group_filter, ["cn"])
        return entries[0][0] if entries else None

    def group_exists(self, group_name: str) -> bool:
        with self.client.connection() as conn:
            return self._find_group_dn(conn, group_name) is not None

    def add_to_group(self, group_name: str, record: IdentityRecord) -> None:
        """Add ``record`` as a member; an existing membership is not an error."""
        with self.client.connection() as conn:
            group_dn = self._find_group_dn(conn, group_name)
            if group_dn is None:
                raise RemoteCommandFailed("add to group", group_name, "group not found")
            target = f"{group_name}/{record.short_name}"
            try:
                ok = conn.modify(group_dn, {"member": [(MODIFY_ADD, [record.distinguished_name])]})
            except LDAPException as exc:
                raise RemoteCommandFailed("add to group", target, str(exc)) from exc
            if not ok and (conn.result or {}).get("result") == RESULT_ATTRIBUTE_OR_VALUE_EXISTS:
                logger.debug("Already a member | group=%s | sam=%s", group_name, record.short_name)
                return
            self.client.check(ok, conn, "add to group", target)
        logger.info("Added to group | group=%s | sam=%s", group_name, record.short_name)


__all__ = ["UserDirectory", "ATTRIBUTE_MAP", "user_filter", "record_from_entry"]
