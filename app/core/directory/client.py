"""Low-level LDAP client for Active Directory.

Handles connection setup, binding, and translating ldap3 results into the
provisioning error taxonomy.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from ldap3 import KERBEROS, NONE, SASL, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException

from app.core.errors import ConflictError, RemoteCommandFailed

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10

# LDAP result codes the adapter treats specially
RESULT_SUCCESS = 0
RESULT_ATTRIBUTE_OR_VALUE_EXISTS = 20
RESULT_NO_SUCH_OBJECT = 32
RESULT_ENTRY_ALREADY_EXISTS = 68


def base_dn_from_domain(domain: str) -> str:
    """Convert ``company.local`` to ``DC=company,DC=local``."""
    return ",".join(f"DC={part}" for part in domain.split(".") if part)


class DirectoryClient:
    """ldap3 connection factory with centralized result handling.

    Usage:
        client = DirectoryClient("dc01.company.local", "DC=company,DC=local",
                                 username="COMPANY\\svc-provisioning", password="...")
        with client.connection() as conn:
            conn.search(client.base_dn, "(sAMAccountName=johdo)")
    """

    def __init__(
        self,
        server_uri: str,
        base_dn: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_ssl: bool = False,
        timeout: int = REQUEST_TIMEOUT,
    ):
        self.server_uri = server_uri
        self.base_dn = base_dn
        self.username = username or None
        self.password = password or None
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg) -> "DirectoryClient":
        return cls(
            cfg.directory_server,
            cfg.base_dn,
            username=cfg.service_account_username,
            password=cfg.service_account_password,
            use_ssl=cfg.directory_use_ssl,
        )

    def _create_connection(self) -> Connection:
        server = Server(
            self.server_uri,
            use_ssl=self.use_ssl,
            get_info=NONE,
            connect_timeout=self.timeout,
        )
        if not self.username:
            # No service account: bind as the process identity (Kerberos ticket cache)
            return Connection(
                server,
                authentication=SASL,
                sasl_mechanism=KERBEROS,
                auto_bind=False,
                raise_exceptions=False,
                receive_timeout=self.timeout,
            )
        return Connection(
            server,
            user=self.username,
            password=self.password,
            authentication=SIMPLE,
            auto_bind=False,
            raise_exceptions=False,
            receive_timeout=self.timeout,
        )

    @contextmanager
    def connection(self) -> Iterator[Connection]:
        """Open and bind a connection, unbinding on exit.

        Raises:
            RemoteCommandFailed: If the server cannot be reached or the bind fails
        """
        conn = self._create_connection()
        try:
            if not conn.bind():
                raise RemoteCommandFailed("bind", self.server_uri, _describe(conn))
        except LDAPException as exc:
            raise RemoteCommandFailed("bind", self.server_uri, str(exc)) from exc

        try:
            yield conn
        finally:
            try:
                conn.unbind()
            except LDAPException as exc:
                logger.warning("LDAP unbind failed | server=%s | error=%s", self.server_uri, exc)

    def check(self, ok: bool, conn: Connection, command: str, target: str) -> None:
        """Raise the matching error when an LDAP operation did not succeed.

        Args:
            ok: Return value of the ldap3 operation
            conn: Connection the operation ran on
            command: Operation name used in the error message
            target: DN or key the operation targeted

        Raises:
            ConflictError: On entryAlreadyExists
            RemoteCommandFailed: On any other non-success result
        """
        if ok:
            return
        code = (conn.result or {}).get("result")
        if code == RESULT_ENTRY_ALREADY_EXISTS:
            raise ConflictError(f"Directory entry '{target}' already exists")
        raise RemoteCommandFailed(command, target, _describe(conn))

    def call(self, conn: Connection, command: str, target: str, fn, *args, **kwargs):
        """Run one ldap3 call, converting library exceptions."""
        try:
            ok = fn(*args, **kwargs)
        except LDAPException as exc:
            raise RemoteCommandFailed(command, target, str(exc)) from exc
        self.check(ok, conn, command, target)
        return ok

    def search(
        self,
        conn: Connection,
        search_base: str,
        search_filter: str,
        attributes: list[str],
        scope=SUBTREE,
    ) -> list[tuple[str, dict]]:
        """Run a search and return ``(dn, attributes)`` pairs.

        An empty result (including noSuchObject on the base) is not an error.
        """
        try:
            conn.search(search_base, search_filter, search_scope=scope, attributes=attributes)
        except LDAPException as exc:
            raise RemoteCommandFailed("search", search_filter, str(exc)) from exc

        code = (conn.result or {}).get("result", RESULT_SUCCESS)
        if code not in (RESULT_SUCCESS, RESULT_NO_SUCH_OBJECT):
            raise RemoteCommandFailed("search", search_filter, _describe(conn))

        return [
            (entry.get("dn", ""), dict(entry.get("attributes") or {}))
            for entry in (conn.response or [])
            if entry.get("type") == "searchResEntry"
        ]


def _describe(conn: Connection) -> str:
    result = conn.result or {}
    description = result.get("description") or ""
    message = result.get("message") or ""
    return " ".join(part for part in (description, message) if part).strip() or "unknown error"


__all__ = ["DirectoryClient", "base_dn_from_domain", "REQUEST_TIMEOUT"]
