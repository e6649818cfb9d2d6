"""
Provisioning Service Layer: unified joiner/mover/leaver and mailbox logic

Used by both the HTTP API and the operator CLI so that validation, ordering
of directory calls, auditing and notifications are identical everywhere.

Architecture:
    HTTP API (/api/*)  ──┐
                         ├──> provisioning_service.py ──> app.core.directory ──> Active Directory
    CLI (scripts/jml) ───┘                           └──> app.core.mailbox   ──> Exchange

Ordering rules:
    - Lookups and guards (duplicate employeeId, group existence, disabled
      container) run before any directory write of the same operation.
    - Membership failures after create are logged; the new account and its
      password are still returned.
    - Notifications are dispatched after the result is known and never change it.
    - Audit failures never break an operation (safe_log_jml_event).
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional, Sequence

from app.core import credentials, identifiers
from app.core.directory.users import user_filter
from app.core.errors import ConflictError, DuplicateEmployeeIdError, NotFoundError, RemoteCommandFailed
from app.core.locks import KeyedLock
from app.core.mailbox.lifecycle import MailboxLifecycle
from app.core.models import (
    CreateUserRequest,
    CreateUserResult,
    IdentityRecord,
    MailboxResult,
    UpdateUserRequest,
    UserUpdateResult,
)
from app.core.notifications import NotificationPolicy
from app.core.ports import DirectoryStore, SchemaIntrospector
from app.core.reconciliation import AttributeReconciler
from scripts import audit

logger = logging.getLogger(__name__)


class ProvisioningService:
    """Sequences the provisioning engines for one request at a time.

    Holds no per-request state; the only shared pieces are the schema cache,
    the advisory lock table and the notification dispatcher, all thread-safe.
    """

    def __init__(
        self,
        directory: DirectoryStore,
        schema: SchemaIntrospector,
        mailbox: MailboxLifecycle,
        notifications: NotificationPolicy,
        *,
        domain: str,
        email_domain: str,
        default_container: str,
        office_containers: Optional[Mapping[str, str]] = None,
        global_groups: Sequence[str] = (),
        office_groups: Optional[Mapping[str, Sequence[str]]] = None,
        optional_attributes: Iterable[str] = ("employeeNumber",),
        allow_name_changes: bool = True,
        disabled_container: str = "",
        lock: Optional[KeyedLock] = None,
        password_length: int = 12,
    ):
        self.directory = directory
        self.schema = schema
        self.mailbox = mailbox
        self.notifications = notifications
        self.domain = domain
        self.email_domain = email_domain
        self.default_container = default_container
        self.office_containers = dict(office_containers or {})
        self.global_groups = list(global_groups)
        self.office_groups = {k: list(v) for k, v in (office_groups or {}).items()}
        self.optional_attributes = list(optional_attributes)
        self.lock = lock or KeyedLock(enabled=False)
        self.password_length = password_length
        self.reconciler = AttributeReconciler(
            directory,
            schema,
            allow_name_changes=allow_name_changes,
            disabled_container=disabled_container,
            optional_attributes=self.optional_attributes,
        )

    @classmethod
    def from_config(cls, cfg, directory, schema, mailbox, notifications) -> "ProvisioningService":
        return cls(
            directory,
            schema,
            mailbox,
            notifications,
            domain=cfg.directory_domain,
            email_domain=cfg.email_domain,
            default_container=cfg.default_user_ou,
            office_containers=cfg.office_ou_overrides,
            global_groups=cfg.global_groups,
            office_groups=cfg.office_groups,
            optional_attributes=cfg.optional_attributes,
            allow_name_changes=cfg.update_display_name,
            disabled_container=cfg.disabled_users_ou,
            lock=KeyedLock(enabled=cfg.identity_lock_enabled),
        )

    # ─────────────────────────────────────────────────────────────────────────
    # Joiner
    # ─────────────────────────────────────────────────────────────────────────

    def create_user(self, request: CreateUserRequest, operator: str = "api") -> CreateUserResult:
        """Create a new account with a unique sAMAccountName and a fresh password.

        Raises:
            DuplicateEmployeeIdError: If the employeeId is already in use
            IdentifierExhausted: If every sAMAccountName candidate is taken
            ConflictError: If the directory reports the entry as already existing
            RemoteCommandFailed: On directory failures
        """
        with self.lock.hold(request.employee_id):
            if self.directory.find_by_filter(user_filter("employeeID", request.employee_id)) is not None:
                raise DuplicateEmployeeIdError(request.employee_id)

            short_name, variant = identifiers.resolve(
                request.first_name,
                request.last_name,
                lambda candidate: self.directory.find_by_unique_key("short_name", candidate) is not None,
            )
            derived = identifiers.derive_name_dependent_fields(
                variant, request.first_name, request.last_name, self.email_domain
            )
            password = credentials.generate_password(self.password_length)
            container = self._container_for(request)
            groups = self._resolve_groups(request.office, short_name)

            fields = {
                "short_name": short_name,
                "employee_id": request.employee_id,
                "given_name": request.first_name,
                "surname": request.last_name,
                "display_name": derived.display_name,
                "common_name": derived.common_name,
                "principal_name": derived.principal_name,
                "email": derived.email,
                "office": request.office,
                "company": request.company,
                "division": request.division,
                "department": request.department,
                "title": request.title,
                "description": request.description,
            }
            if request.manager_employee_id:
                fields["manager"] = self._manager_dn(request.manager_employee_id, short_name)
            if request.employee_number and self._optional_attribute_allowed("employeeNumber"):
                fields["employee_number"] = request.employee_number

            try:
                record = self.directory.create(container, fields, password)
            except ConflictError as exc:
                raise ConflictError(
                    f"Directory entry for '{short_name}' already exists; "
                    "it may have been created by a concurrent request."
                ) from exc

            self._add_memberships(record, groups)

        logger.info("Created user | sam=%s | employee_id=%s | variant=%d | container=%s",
                    short_name, request.employee_id, variant.index, container)

        result = CreateUserResult(
            employee_id=request.employee_id,
            short_name=record.short_name or short_name,
            email=derived.email,
            principal_name=derived.principal_name,
            display_name=derived.display_name,
            common_name=derived.common_name,
            distinguished_name=record.distinguished_name,
            password=password,
        )
        audit.safe_log_jml_event(
            "joiner",
            result.short_name,
            operator=operator,
            domain=self.domain,
            details={
                "employee_id": request.employee_id,
                "distinguished_name": result.distinguished_name,
                "office": request.office,
            },
        )
        self.notifications.user_created(request, result)
        return result

    def _container_for(self, request: CreateUserRequest) -> str:
        if request.target_ou:
            return request.target_ou
        if request.office and request.office in self.office_containers:
            return self.office_containers[request.office]
        return self.default_container

    def _manager_dn(self, manager_employee_id: str, short_name: str) -> Optional[str]:
        try:
            manager = self.directory.find_by_filter(user_filter("employeeID", manager_employee_id))
        except RemoteCommandFailed as exc:
            logger.warning("Manager lookup failed, creating without manager | sam=%s | manager_employee_id=%s | error=%s",
                           short_name, manager_employee_id, exc)
            return None
        if manager is None:
            logger.warning("Manager not found, creating without manager | sam=%s | manager_employee_id=%s",
                           short_name, manager_employee_id)
            return None
        return manager.distinguished_name

    def _optional_attribute_allowed(self, attribute: str) -> bool:
        if attribute.lower() not in {name.lower() for name in self.optional_attributes}:
            return False
        if not self.schema.has_attribute(attribute):
            logger.warning("Attribute not defined in schema, skipping | attribute=%s", attribute)
            return False
        return True

    def _resolve_groups(self, office: Optional[str], short_name: str) -> list[str]:
        """Return the configured groups that exist. Runs before the record is written."""
        groups = list(self.global_groups)
        if office:
            groups.extend(self.office_groups.get(office, []))
        existing = []
        for group in groups:
            if not self.directory.group_exists(group):
                logger.warning("Group not found, membership skipped | group=%s | sam=%s", group, short_name)
                continue
            existing.append(group)
        return existing

    def _add_memberships(self, record: IdentityRecord, groups: Sequence[str]) -> None:
        # The account already exists here; a failed membership must not lose its password
        for group in groups:
            try:
                self.directory.add_to_group(group, record)
            except RemoteCommandFailed as exc:
                logger.error("Failed to add group membership | group=%s | sam=%s | error=%s",
                             group, record.short_name, exc.detail)

    # ─────────────────────────────────────────────────────────────────────────
    # Mover / Leaver
    # ─────────────────────────────────────────────────────────────────────────

    def update_user(self, request: UpdateUserRequest, operator: str = "api") -> UserUpdateResult:
        """Apply only the fields that differ from the stored record.

        Raises:
            NotFoundError: If no record has the employeeId, or it is in the disabled container
            RemoteCommandFailed: On directory failures
        """
        with self.lock.hold(request.employee_id):
            record = self.directory.find_by_filter(user_filter("employeeID", request.employee_id))
            if record is None:
                raise NotFoundError(f"User with employeeID '{request.employee_id}' not found.")
            result = self.reconciler.reconcile(record, request)

        disabled = any(c.field == "enabled" and c.new_value == "false" for c in result.changes)
        audit.safe_log_jml_event(
            "leaver" if disabled else "mover",
            result.user.short_name,
            operator=operator,
            domain=self.domain,
            details={
                "employee_id": request.employee_id,
                "changes": [change.to_dict() for change in result.changes],
            },
        )
        logger.info("Updated user | sam=%s | employee_id=%s | changes=%d",
                    result.user.short_name, request.employee_id, len(result.changes))
        self.notifications.user_updated(result.user, result.changes)
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Lookup
    # ─────────────────────────────────────────────────────────────────────────

    def get_user(self, short_name: str) -> IdentityRecord:
        record = self.directory.find_by_unique_key("short_name", short_name)
        if record is None:
            raise NotFoundError(f"User '{short_name}' not found.")
        return record

    # ─────────────────────────────────────────────────────────────────────────
    # Mailbox
    # ─────────────────────────────────────────────────────────────────────────

    def enable_mailbox(self, short_name: str, operator: str = "api") -> MailboxResult:
        """Ensure the mailbox exists and is configured, then send the welcome mail.

        The welcome mail needs the user's principal name; if that lookup fails
        the mailbox result is still returned.
        """
        result = self.mailbox.ensure_enabled(short_name)
        audit.safe_log_jml_event(
            "mailbox_enable",
            short_name,
            operator=operator,
            domain=self.domain,
            details={"was_already_enabled": result.was_already_enabled},
        )

        try:
            record = self.directory.find_by_unique_key("short_name", short_name)
        except RemoteCommandFailed as exc:
            logger.error("User lookup after mailbox enable failed, onboarding mail not sent | sam=%s | error=%s",
                         short_name, exc)
            return result

        if record is None or not record.principal_name:
            logger.warning("No principal name for user, onboarding mail not sent | sam=%s", short_name)
            return result

        self.notifications.mailbox_enabled(record.principal_name, short_name)
        return result

    def disable_mailbox(self, short_name: str, operator: str = "api") -> MailboxResult:
        result = self.mailbox.ensure_disabled(short_name)
        audit.safe_log_jml_event("mailbox_disable", short_name, operator=operator, domain=self.domain)
        return result


def build_service(cfg, dispatcher=None) -> ProvisioningService:
    """Wire the production adapters (ldap3, pypsrp, SMTP) from settings."""
    from app.core.directory import DirectoryClient, DirectorySchema, SchemaCache, UserDirectory
    from app.core.mailbox import ExchangeRemote
    from app.core.notifications import NotificationDispatcher, SmtpNotifier

    client = DirectoryClient.from_config(cfg)
    directory = UserDirectory(client)
    schema = SchemaCache(DirectorySchema(client))
    mailbox = MailboxLifecycle(ExchangeRemote.from_config(cfg))
    if dispatcher is None:
        dispatcher = NotificationDispatcher(SmtpNotifier.from_config(cfg), max_workers=cfg.notification_workers)
    notifications = NotificationPolicy(
        dispatcher,
        enabled=cfg.send_email_notifications,
        admin_address=cfg.mail_to,
        office_recipients=cfg.office_recipients,
    )
    return ProvisioningService.from_config(cfg, directory, schema, mailbox, notifications)
