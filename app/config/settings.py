"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from app.core.directory.client import base_dn_from_domain


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            print(f"[settings] ✓ Loaded {env_var} from environment (fallback)")
            return secret_value

    return None


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool
    azure_use_keyvault: bool = False

    # Directory
    directory_domain: str = ""
    email_domain: str = ""
    base_dn: str = ""
    directory_server: str = ""
    directory_use_ssl: bool = False
    service_account_username: str = ""
    service_account_password: str = field(default="", repr=False)

    # Containers and groups
    default_user_ou: str = ""
    office_ou_overrides: dict[str, str] = field(default_factory=dict)
    disabled_users_ou: str = ""
    global_groups: list[str] = field(default_factory=list)
    office_groups: dict[str, list[str]] = field(default_factory=dict)

    # Update policy
    update_display_name: bool = True
    optional_attributes: list[str] = field(default_factory=lambda: ["employeeNumber"])
    identity_lock_enabled: bool = True

    # Exchange
    exchange_powershell_uri: str = ""
    exchange_auth: str = "kerberos"

    # SMTP / notifications
    smtp_server: str = ""
    smtp_port: int = 25
    smtp_use_tls: bool = False
    smtp_username: str = ""
    smtp_password: str = field(default="", repr=False)
    mail_from: str = ""
    mail_to: str = ""
    office_recipients: dict[str, list[str]] = field(default_factory=dict)
    send_email_notifications: bool = True
    notification_timeout: float = 10
    notification_workers: int = 4

    # Logging / audit
    log_level: str = "INFO"
    audit_log_signing_key: str = field(default="", repr=False)


def _enforce_demo_mode_consistency() -> None:
    """Demo mode must never use Azure Key Vault."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    if demo_mode and os.environ.get("AZURE_USE_KEYVAULT", "false").lower() == "true":
        print("[settings] WARNING: DEMO_MODE=true requires AZURE_USE_KEYVAULT=false (runtime guard)")
        os.environ["AZURE_USE_KEYVAULT"] = "false"


def _get_or_default(var_name: str, demo_default: Optional[str] = None, required: bool = True, demo_mode: bool = False) -> str:
    """Get environment variable, or the demo default in demo mode."""
    value = os.environ.get(var_name, "").strip()
    if value:
        return value

    if demo_mode and demo_default is not None:
        print(f"[demo-mode] Using default for {var_name}")
        return demo_default

    if not required:
        return ""

    raise RuntimeError(f"Environment variable {var_name} is required in production mode.")


def _bool(var_name: str, default: bool) -> bool:
    return os.environ.get(var_name, str(default)).strip().lower() in ("1", "true", "yes", "on")


def _list(var_name: str, default: str = "") -> list[str]:
    return [item.strip() for item in os.environ.get(var_name, default).split(",") if item.strip()]


def _json(var_name: str, default: Any) -> Any:
    """Parse a JSON-valued variable; malformed JSON is a startup error."""
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RuntimeError(f"{var_name} is not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise RuntimeError(f"{var_name} must be a JSON object")
    return value


def _office_lists(var_name: str) -> dict[str, list[str]]:
    raw = _json(var_name, {})
    result = {}
    for office, values in raw.items():
        if isinstance(values, str):
            values = [values]
        result[str(office)] = [str(v).strip() for v in values if str(v).strip()]
    return result


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    _enforce_demo_mode_consistency()

    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"
    azure_use_keyvault = os.environ.get("AZURE_USE_KEYVAULT", "false").lower() == "true"

    # ─────────────────────────────────────────────────────────────────────────
    # Directory
    # ─────────────────────────────────────────────────────────────────────────
    directory_domain = _get_or_default("AD_DOMAIN", demo_default="company.local", demo_mode=demo_mode)
    email_domain = os.environ.get("AD_EMAIL_DOMAIN", "").strip() or directory_domain
    base_dn = os.environ.get("AD_BASE_DN", "").strip() or base_dn_from_domain(directory_domain)
    directory_server = os.environ.get("AD_SERVER", "").strip() or directory_domain
    directory_use_ssl = _bool("AD_USE_SSL", False)

    service_account_username = os.environ.get("AD_SERVICE_ACCOUNT_USERNAME", "").strip()
    service_account_password = _load_secret_from_file(
        "ad_service_account_password",
        "AD_SERVICE_ACCOUNT_PASSWORD"
    ) or ""
    if service_account_username and not service_account_password and not demo_mode:
        raise RuntimeError("AD_SERVICE_ACCOUNT_PASSWORD not found in /run/secrets or environment")

    default_user_ou = _get_or_default(
        "AD_DEFAULT_USER_OU",
        demo_default=f"OU=Users,{base_dn}",
        demo_mode=demo_mode
    )
    office_ou_overrides = {str(k): str(v) for k, v in _json("AD_OFFICE_OU_OVERRIDES", {}).items()}
    disabled_users_ou = os.environ.get("AD_DISABLED_USERS_OU", "").strip()
    if not disabled_users_ou and demo_mode:
        disabled_users_ou = f"OU=Disabled Users,{base_dn}"

    global_groups = _list("AD_GLOBAL_GROUPS")
    office_groups = _office_lists("AD_OFFICE_GROUPS")
    update_display_name = _bool("AD_UPDATE_DISPLAY_NAME", True)
    optional_attributes = _list("AD_OPTIONAL_ATTRIBUTES", "employeeNumber")

    # ─────────────────────────────────────────────────────────────────────────
    # Exchange
    # ─────────────────────────────────────────────────────────────────────────
    exchange_powershell_uri = _get_or_default(
        "EXCHANGE_POWERSHELL_URI",
        demo_default=f"http://exchange.{directory_domain}/PowerShell/",
        demo_mode=demo_mode
    )
    exchange_auth = os.environ.get("EXCHANGE_AUTH", "").strip().lower()
    if not exchange_auth:
        exchange_auth = "negotiate" if service_account_username else "kerberos"

    # ─────────────────────────────────────────────────────────────────────────
    # SMTP / notifications
    # ─────────────────────────────────────────────────────────────────────────
    send_email_notifications = _bool("SEND_EMAIL_NOTIFICATIONS", True)
    smtp_server = _get_or_default(
        "SMTP_SERVER",
        demo_default="localhost",
        required=send_email_notifications,
        demo_mode=demo_mode
    )
    smtp_port = int(os.environ.get("SMTP_PORT", "25"))
    smtp_use_tls = _bool("SMTP_USE_TLS", False)
    smtp_username = os.environ.get("SMTP_USERNAME", "").strip()
    smtp_password = _load_secret_from_file("smtp_password", "SMTP_PASSWORD") or ""
    mail_from = os.environ.get("MAIL_FROM", "").strip() or f"provisioning@{email_domain}"
    mail_to = os.environ.get("MAIL_TO", "").strip()
    office_recipients = _office_lists("OFFICE_RECIPIENTS")
    notification_timeout = float(os.environ.get("NOTIFICATION_TIMEOUT", "10"))
    notification_workers = int(os.environ.get("NOTIFICATION_WORKERS", "4"))

    # ─────────────────────────────────────────────────────────────────────────
    # Audit
    # ─────────────────────────────────────────────────────────────────────────
    audit_log_signing_key = _load_secret_from_file(
        "audit_log_signing_key",
        "AUDIT_LOG_SIGNING_KEY"
    )
    if audit_log_signing_key:
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
    elif demo_mode:
        audit_log_signing_key = os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production")
        os.environ["AUDIT_LOG_SIGNING_KEY"] = audit_log_signing_key
        print(f"[demo-mode] Using demo AUDIT_LOG_SIGNING_KEY: {audit_log_signing_key[:20]}...")
    else:
        audit_log_signing_key = ""
        print("[settings] ⚠️ AUDIT_LOG_SIGNING_KEY not set, audit events will be unsigned")

    log_level = os.environ.get("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    print(f"[settings] Mode={mode_label}; domain={directory_domain}; server={directory_server}; base_dn={base_dn}")

    if demo_mode:
        print("[settings] WARNING: Demo defaults in use. Do not deploy with these defaults.")

    return AppConfig(
        demo_mode=demo_mode,
        azure_use_keyvault=azure_use_keyvault,
        directory_domain=directory_domain,
        email_domain=email_domain,
        base_dn=base_dn,
        directory_server=directory_server,
        directory_use_ssl=directory_use_ssl,
        service_account_username=service_account_username,
        service_account_password=service_account_password,
        default_user_ou=default_user_ou,
        office_ou_overrides=office_ou_overrides,
        disabled_users_ou=disabled_users_ou,
        global_groups=global_groups,
        office_groups=office_groups,
        update_display_name=update_display_name,
        optional_attributes=optional_attributes,
        identity_lock_enabled=_bool("IDENTITY_LOCK_ENABLED", True),
        exchange_powershell_uri=exchange_powershell_uri,
        exchange_auth=exchange_auth,
        smtp_server=smtp_server,
        smtp_port=smtp_port,
        smtp_use_tls=smtp_use_tls,
        smtp_username=smtp_username,
        smtp_password=smtp_password,
        mail_from=mail_from,
        mail_to=mail_to,
        office_recipients=office_recipients,
        send_email_notifications=send_email_notifications,
        notification_timeout=notification_timeout,
        notification_workers=notification_workers,
        log_level=log_level,
        audit_log_signing_key=audit_log_signing_key,
    )
