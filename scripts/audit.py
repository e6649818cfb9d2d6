"""Signed audit trail for provisioning operations (JML and mailbox events)."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Literal

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "jml-events.jsonl"

_SECRET_PATHS = (
    Path("/run/secrets/audit_log_signing_key"),
    Path(".runtime/secrets/audit_log_signing_key"),
)
_DEMO_SIGNING_KEY = "demo-audit-signing-key-change-in-production"

EventType = Literal[
    "joiner", "mover", "leaver",
    "mailbox_enable", "mailbox_disable",
]

# Never written to the trail, whatever a caller passes in details
_REDACTED_KEYS = frozenset({"password", "credential"})


def _get_signing_key() -> bytes:
    """Signing key from the environment, then secret files, then the demo default.

    Read on every call so a key injected by the Key Vault hook after import is used.
    """
    key = os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip()
    if key:
        return key.encode("utf-8")
    key_file = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
    paths = [Path(key_file)] if key_file else []
    paths.extend(_SECRET_PATHS)
    for path in paths:
        if path.is_file():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    if os.environ.get("DEMO_MODE", "false").lower() == "true":
        return _DEMO_SIGNING_KEY.encode("utf-8")
    return b""


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """HMAC-SHA256 over the canonical JSON form of the event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"))
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def _scrub(details: dict[str, Any] | None) -> dict[str, Any]:
    return {k: v for k, v in (details or {}).items() if k.lower() not in _REDACTED_KEYS}


def log_jml_event(
    event_type: EventType,
    username: str,
    *,
    operator: str = "system",
    domain: str = "",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append one signed event to the audit trail.

    Args:
        event_type: joiner, mover, leaver, mailbox_enable or mailbox_disable
        username: sAMAccountName affected by the operation
        operator: Who performed the operation ("api", "cli", ...)
        domain: Directory domain the account lives in
        details: Additional context (employeeId, changed fields, ...)
        success: Whether the operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "domain": domain,
        "username": username,
        "operator": operator,
        "success": success,
        "details": _scrub(details),
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_jml_event(
    event_type: EventType,
    username: str,
    *,
    operator: str = "system",
    domain: str = "",
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Same as log_jml_event() but never raises.

    Returns:
        True if the event was written, False otherwise (reason on stderr)
    """
    try:
        log_jml_event(
            event_type,
            username,
            operator=operator,
            domain=domain,
            details=details,
            success=success,
        )
        return True
    except Exception as e:
        print(
            f"[audit] Warning: Failed to log {event_type} event for {username}: {e}",
            file=sys.stderr
        )
        return False


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                if hmac.compare_digest(stored_sig, _sign_event(event)):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid


if __name__ == "__main__":
    total, valid = verify_audit_log()
    print(f"Audit log: {valid}/{total} events with valid signatures")
    sys.exit(0 if total == valid else 1)
