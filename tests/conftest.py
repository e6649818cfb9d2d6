"""Pytest shared fixtures: in-memory directory, mailbox and notifier fakes."""
import json
import os
import pathlib
import re
import sys
import threading
from contextlib import contextmanager
from dataclasses import replace

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
os.environ.setdefault("DEMO_MODE", "true")
os.environ.setdefault("AZURE_USE_KEYVAULT", "false")

import pytest

from app.config import AppConfig
from app.core.errors import ConflictError, NotificationFailed, RemoteCommandFailed
from app.core.mailbox.lifecycle import MailboxLifecycle
from app.core.models import IdentityRecord
from app.core.notifications import NotificationDispatcher, NotificationPolicy
from app.core.provisioning_service import ProvisioningService
from scripts import audit

BASE_DN = "DC=company,DC=local"
USERS_OU = f"OU=Users,{BASE_DN}"
DISABLED_OU = f"OU=Disabled Users,{BASE_DN}"

_FILTER_TERM = re.compile(r"\((employeeID|sAMAccountName)=([^)]*)\)")


# ─────────────────────────────────────────────────────────────────────────────
# Fakes
# ─────────────────────────────────────────────────────────────────────────────
class FakeDirectory:
    """Directory Store kept in a dict keyed by sAMAccountName."""

    def __init__(self):
        self.records: dict[str, IdentityRecord] = {}
        self.groups: dict[str, list[str]] = {}
        self.passwords: dict[str, str] = {}
        self.writes: list[tuple[str, dict]] = []
        self.renames: list[tuple[str, str]] = []
        self.creates: list[tuple[str, dict]] = []
        self.lookups: list[tuple[str, str]] = []
        self.fail_on: dict[str, Exception] = {}

    def _maybe_fail(self, operation):
        if operation in self.fail_on:
            raise self.fail_on[operation]

    def add(self, short_name, **fields) -> IdentityRecord:
        fields.setdefault("common_name", fields.get("display_name", short_name))
        fields.setdefault("distinguished_name", f"CN={fields['common_name']},{USERS_OU}")
        record = IdentityRecord(short_name=short_name, **fields)
        self.records[short_name] = record
        return record

    def find_by_unique_key(self, key_type, key):
        self._maybe_fail("find_by_unique_key")
        self.lookups.append((key_type, key))
        for record in self.records.values():
            if getattr(record, key_type) == key:
                return replace(record)
        return None

    def find_by_filter(self, filter_expression, container=None):
        self._maybe_fail("find_by_filter")
        match = _FILTER_TERM.search(filter_expression)
        if not match:
            return None
        attribute, value = match.groups()
        field = "employee_id" if attribute == "employeeID" else "short_name"
        for record in self.records.values():
            if getattr(record, field) != value:
                continue
            if container and not record.distinguished_name.endswith(container):
                continue
            return replace(record)
        return None

    def create(self, container, fields, password):
        self._maybe_fail("create")
        short_name = fields["short_name"]
        if short_name in self.records:
            raise ConflictError(f"Directory entry '{short_name}' already exists")
        self.creates.append((container, dict(fields)))
        values = {k: v for k, v in fields.items() if v is not None and k != "short_name"}
        values["distinguished_name"] = f"CN={fields['common_name']},{container}"
        record = IdentityRecord(short_name=short_name, **values)
        self.records[short_name] = record
        self.passwords[short_name] = password
        return replace(record)

    def write_attributes(self, record, fields):
        self._maybe_fail("write_attributes")
        self.writes.append((record.short_name, dict(fields)))
        stored = self.records[record.short_name]
        for name, value in fields.items():
            setattr(stored, name, value)

    def rename(self, record, new_common_name):
        self._maybe_fail("rename")
        stored = self.records[record.short_name]
        parent = stored.distinguished_name.split(",", 1)[1]
        stored.common_name = new_common_name
        stored.distinguished_name = f"CN={new_common_name},{parent}"
        self.renames.append((record.short_name, new_common_name))
        return stored.distinguished_name

    def group_exists(self, group_name):
        self._maybe_fail("group_exists")
        return group_name in self.groups

    def add_to_group(self, group_name, record):
        self._maybe_fail("add_to_group")
        self.groups[group_name].append(record.short_name)


class StaticSchema:
    def __init__(self, attributes=("employeeNumber",)):
        self.attributes = set(attributes)
        self.probes = []

    def has_attribute(self, name):
        self.probes.append(name)
        return name in self.attributes


class FakeMailboxSession:
    def __init__(self, subsystem):
        self.subsystem = subsystem

    def exists(self, key):
        self.subsystem.commands.append(("Get-Mailbox", key, {}))
        return key in self.subsystem.mailboxes

    def run_command(self, name, key, params=None):
        self.subsystem.commands.append((name, key, dict(params or {})))
        if name == self.subsystem.fail_command:
            raise RemoteCommandFailed(name, key, "simulated failure")
        if name == "Enable-Mailbox":
            self.subsystem.mailboxes.add(key)
        elif name == "Disable-Mailbox":
            self.subsystem.mailboxes.discard(key)


class FakeMailboxSubsystem:
    def __init__(self, mailboxes=()):
        self.mailboxes = set(mailboxes)
        self.commands = []
        self.sessions = 0
        self.fail_command = None

    @contextmanager
    def session(self):
        self.sessions += 1
        yield FakeMailboxSession(self)

    def names(self):
        return [name for name, _, _ in self.commands]


class FakeNotifier:
    def __init__(self):
        self.sent = []
        self.fail_for = set()
        self._lock = threading.Lock()

    def send(self, subject, body, to_address):
        if to_address in self.fail_for:
            raise NotificationFailed(to_address, subject, "connection refused")
        with self._lock:
            self.sent.append({"subject": subject, "body": body, "to": to_address})

    def to(self, address):
        return [m for m in self.sent if m["to"] == address]


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────
@pytest.fixture(autouse=True)
def _isolated_audit_log(monkeypatch, tmp_path):
    """Keep audit events out of the working tree."""
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "jml-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return audit_dir / "jml-events.jsonl"


@pytest.fixture()
def audit_events(_isolated_audit_log):
    """Callable returning the audit events written so far."""

    def read():
        if not _isolated_audit_log.exists():
            return []
        lines = _isolated_audit_log.read_text(encoding="utf-8").splitlines()
        return [json.loads(line) for line in lines if line.strip()]

    return read


@pytest.fixture()
def directory():
    return FakeDirectory()


@pytest.fixture()
def schema():
    return StaticSchema()


@pytest.fixture()
def mailbox_subsystem():
    return FakeMailboxSubsystem()


@pytest.fixture()
def notifier():
    return FakeNotifier()


@pytest.fixture()
def dispatcher(notifier):
    dispatcher = NotificationDispatcher(notifier, max_workers=2)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture()
def app_config():
    return AppConfig(
        demo_mode=True,
        directory_domain="company.local",
        email_domain="company.com",
        base_dn=BASE_DN,
        directory_server="dc01.company.local",
        default_user_ou=USERS_OU,
        office_ou_overrides={"Berlin": f"OU=Berlin,{USERS_OU}"},
        disabled_users_ou=DISABLED_OU,
        global_groups=["All Staff"],
        office_groups={"Berlin": ["Berlin Staff"], "NRW": ["NRW Staff", "Missing Group"]},
        exchange_powershell_uri="http://exchange.company.local/PowerShell/",
        smtp_server="localhost",
        mail_from="provisioning@company.com",
        mail_to="it-admin@company.com",
        office_recipients={"Berlin": ["berlin-office@company.com", "berlin-hr@company.com"]},
    )


@pytest.fixture()
def service(app_config, directory, schema, mailbox_subsystem, dispatcher):
    directory.groups = {"All Staff": [], "Berlin Staff": [], "NRW Staff": []}
    notifications = NotificationPolicy(
        dispatcher,
        enabled=app_config.send_email_notifications,
        admin_address=app_config.mail_to,
        office_recipients=app_config.office_recipients,
    )
    svc = ProvisioningService.from_config(
        app_config, directory, schema, MailboxLifecycle(mailbox_subsystem), notifications
    )
    return svc


@pytest.fixture()
def client(app_config, service):
    """Flask test client wired to the in-memory fakes."""
    from app.flask_app import create_app

    flask_app = create_app(config=app_config, service=service)
    flask_app.config.update(TESTING=True)
    with flask_app.test_client() as client:
        with flask_app.app_context():
            yield client


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (requires a directory server)"
    )
