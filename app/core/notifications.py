"""Notification policy, SMTP delivery, and fire-and-forget dispatch.

Who receives what:

    creation    office recipients (no password) + admin address (with password)
    update      admin address, only when at least one field changed
    onboarding  the user's own principal name, after mailbox enablement

Delivery never affects the operation that triggered it: failures are logged
by the dispatcher and dropped.
"""
from __future__ import annotations

import logging
import smtplib
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Mapping, Optional, Sequence

from app.core.errors import NotificationFailed
from app.core.models import ChangeRecord, CreateUserRequest, CreateUserResult, IdentityRecord
from app.core.ports import Notifier

logger = logging.getLogger(__name__)

CREATED_SUBJECT = "New user account created"
UPDATED_SUBJECT = "User account updated"
ONBOARDING_SUBJECT = "Welcome"


@dataclass(frozen=True)
class Message:
    subject: str
    body: str
    to_address: str


# ─────────────────────────────────────────────────────────────────────────────
# Body builders
# ─────────────────────────────────────────────────────────────────────────────

def build_created_body(request: CreateUserRequest, result: CreateUserResult, include_password: bool) -> str:
    lines = [
        "New user account created:",
        "",
        f"Name     - {request.first_name}",
        f"LastName - {request.last_name}",
        f"Email    - {result.email}",
        f"Login    - {result.short_name}",
        f"ID       - {result.employee_id}",
        f"Office   - {request.office or '-'}",
    ]
    if include_password:
        lines += ["", f"Password - {result.password}"]
    return "\n".join(lines) + "\n"


def build_updated_body(user: IdentityRecord, changes: Sequence[ChangeRecord]) -> str:
    lines = [
        "User account updated:",
        "",
        f"Login    - {user.short_name}",
        f"ID       - {user.employee_id}",
        "",
        "Changes:",
    ]
    for change in changes:
        lines.append(f"[{change.field}]")
        lines.append(f"  Old value: {change.old_value or '(empty)'}")
        lines.append(f"  New value: {change.new_value or '(empty)'}")
    return "\n".join(lines) + "\n"


def build_onboarding_body(short_name: str) -> str:
    return f"Your San is {short_name}. Welcome to our company"


# ─────────────────────────────────────────────────────────────────────────────
# SMTP transport
# ─────────────────────────────────────────────────────────────────────────────

class SmtpNotifier:
    """Sends plain-text mail through one SMTP connection per message."""

    def __init__(
        self,
        server: str,
        port: int = 25,
        mail_from: str = "",
        use_tls: bool = False,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10,
    ):
        self.server = server
        self.port = port
        self.mail_from = mail_from
        self.use_tls = use_tls
        self.username = username or None
        self.password = password or None
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> "SmtpNotifier":
        return cls(
            cfg.smtp_server,
            port=cfg.smtp_port,
            mail_from=cfg.mail_from,
            use_tls=cfg.smtp_use_tls,
            username=cfg.smtp_username,
            password=cfg.smtp_password,
            timeout=cfg.notification_timeout,
        )

    def send(self, subject: str, body: str, to_address: str) -> None:
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self.mail_from
        message["To"] = to_address
        message.set_content(body)

        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationFailed(to_address, subject, str(exc)) from exc


# ─────────────────────────────────────────────────────────────────────────────
# Dispatch
# ─────────────────────────────────────────────────────────────────────────────

class NotificationDispatcher:
    """Runs sends on a private thread pool and tracks them until done.

    ``submit`` returns at once. A send that fails for any reason is logged
    with its recipient and subject; nothing is re-raised or retried.
    """

    def __init__(self, notifier: Notifier, max_workers: int = 4):
        self.notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, message: Message) -> Future:
        future = self._executor.submit(self._deliver, message)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, message: Message) -> bool:
        try:
            self.notifier.send(message.subject, message.body, message.to_address)
        except NotificationFailed as exc:
            logger.error("Failed to send email | to=%s | subject=%s | error=%s",
                         message.to_address, message.subject, exc.reason)
            return False
        except Exception:
            logger.exception("Unexpected error sending email | to=%s | subject=%s",
                             message.to_address, message.subject)
            return False
        logger.info("Email sent | to=%s | subject=%s", message.to_address, message.subject)
        return True

    def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding sends. Returns False if some are still running."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)


# ─────────────────────────────────────────────────────────────────────────────
# Policy
# ─────────────────────────────────────────────────────────────────────────────

class NotificationPolicy:
    """Decides recipients and redaction per event and hands messages to a dispatcher.

    Args:
        dispatcher: Anything with ``submit(Message)``
        enabled: Global switch; when False nothing is sent
        admin_address: Administrative recipient (receives the password)
        office_recipients: Office name -> addresses receiving the redacted body
    """

    def __init__(
        self,
        dispatcher,
        enabled: bool = True,
        admin_address: str = "",
        office_recipients: Optional[Mapping[str, Sequence[str]]] = None,
    ):
        self.dispatcher = dispatcher
        self.enabled = enabled
        self.admin_address = (admin_address or "").strip()
        self.office_recipients = dict(office_recipients or {})

    def creation_messages(self, request: CreateUserRequest, result: CreateUserResult) -> list[Message]:
        messages = []
        if request.office and request.office in self.office_recipients:
            redacted = build_created_body(request, result, include_password=False)
            for address in self.office_recipients[request.office]:
                messages.append(Message(CREATED_SUBJECT, redacted, address))
        if self.admin_address:
            full = build_created_body(request, result, include_password=True)
            messages.append(Message(CREATED_SUBJECT, full, self.admin_address))
        return messages

    def update_messages(self, user: IdentityRecord, changes: Sequence[ChangeRecord]) -> list[Message]:
        if not changes or not self.admin_address:
            return []
        return [Message(UPDATED_SUBJECT, build_updated_body(user, changes), self.admin_address)]

    def onboarding_messages(self, to_address: str, short_name: str) -> list[Message]:
        if not to_address:
            return []
        return [Message(ONBOARDING_SUBJECT, build_onboarding_body(short_name), to_address)]

    def _dispatch(self, event: str, short_name: str, messages: list[Message]) -> list[Future]:
        if not self.enabled:
            logger.debug("Email notifications disabled, skipping | event=%s | sam=%s", event, short_name)
            return []
        futures = []
        for message in messages:
            try:
                futures.append(self.dispatcher.submit(message))
            except Exception:
                logger.exception("Failed to queue email | to=%s | subject=%s | event=%s | sam=%s",
                                 message.to_address, message.subject, event, short_name)
        return futures

    def user_created(self, request: CreateUserRequest, result: CreateUserResult) -> list[Future]:
        return self._dispatch("create", result.short_name, self.creation_messages(request, result))

    def user_updated(self, user: IdentityRecord, changes: Sequence[ChangeRecord]) -> list[Future]:
        if not changes:
            logger.info("User update had no changes, notification skipped | sam=%s", user.short_name)
            return []
        return self._dispatch("update", user.short_name, self.update_messages(user, changes))

    def mailbox_enabled(self, to_address: str, short_name: str) -> list[Future]:
        return self._dispatch("onboarding", short_name, self.onboarding_messages(to_address, short_name))
