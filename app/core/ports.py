"""Contracts for the external systems the provisioning core talks to."""
from __future__ import annotations

from contextlib import AbstractContextManager
from typing import Mapping, Optional, Protocol, runtime_checkable

from app.core.models import IdentityRecord


@runtime_checkable
class DirectoryStore(Protocol):
    """Identity records: lookup, create, attribute writes, rename, groups.

    ``key_type`` is one of ``short_name``, ``employee_id`` or
    ``distinguished_name``. Lookups return None on a miss.
    """

    def find_by_unique_key(self, key_type: str, key: str) -> Optional[IdentityRecord]: ...

    def find_by_filter(self, filter_expression: str, container: Optional[str] = None) -> Optional[IdentityRecord]: ...

    def create(self, container: str, fields: Mapping[str, str], password: str) -> IdentityRecord: ...

    def write_attributes(self, record: IdentityRecord, fields: Mapping[str, object]) -> None: ...

    def rename(self, record: IdentityRecord, new_common_name: str) -> str: ...

    def group_exists(self, group_name: str) -> bool: ...

    def add_to_group(self, group_name: str, record: IdentityRecord) -> None: ...


@runtime_checkable
class SchemaIntrospector(Protocol):
    def has_attribute(self, name: str) -> bool: ...


@runtime_checkable
class MailboxSession(Protocol):
    """One open remote command session against the mailbox subsystem."""

    def exists(self, key: str) -> bool: ...

    def run_command(self, name: str, key: str, params: Optional[Mapping[str, object]] = None) -> None: ...


@runtime_checkable
class MailboxSubsystem(Protocol):
    def session(self) -> AbstractContextManager[MailboxSession]: ...


@runtime_checkable
class Notifier(Protocol):
    """Delivers one message; raises NotificationFailed on transport errors."""

    def send(self, subject: str, body: str, to_address: str) -> None: ...


__all__ = ["DirectoryStore", "SchemaIntrospector", "MailboxSession", "MailboxSubsystem", "Notifier"]
