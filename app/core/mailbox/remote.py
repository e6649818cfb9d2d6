"""Exchange remote PowerShell adapter (pypsrp).

One ``session()`` opens a single runspace on the ``Microsoft.Exchange``
endpoint; every command of a lifecycle call runs inside it.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Mapping, Optional
from urllib.parse import urlparse

import requests
from pypsrp.exceptions import WinRMError
from pypsrp.powershell import PowerShell, RunspacePool
from pypsrp.wsman import WSMan

from app.core.errors import RemoteCommandFailed

logger = logging.getLogger(__name__)

EXCHANGE_CONFIGURATION = "Microsoft.Exchange"
OPERATION_TIMEOUT = 60

_REMOTE_ERRORS = (WinRMError, requests.RequestException, OSError)


class ExchangeSession:
    """Commands against one open runspace pool."""

    def __init__(self, pool: RunspacePool):
        self.pool = pool

    def _invoke(self, name: str, key: str, params: Mapping[str, object]) -> PowerShell:
        ps = PowerShell(self.pool)
        ps.add_cmdlet(name)
        for param, value in params.items():
            ps.add_parameter(param, value)
        try:
            ps.invoke()
        except _REMOTE_ERRORS as exc:
            raise RemoteCommandFailed(name, key, str(exc)) from exc
        return ps

    def exists(self, key: str) -> bool:
        """True when Get-Mailbox finds a mailbox for ``key``."""
        ps = self._invoke("Get-Mailbox", key, {"Identity": key})
        found = not ps.had_errors and bool(ps.output)
        logger.debug("Mailbox lookup | sam=%s | exists=%s", key, found)
        return found

    def run_command(self, name: str, key: str, params: Optional[Mapping[str, object]] = None) -> None:
        """Run one cmdlet with ``Identity=key`` plus ``params``.

        Raises:
            RemoteCommandFailed: If the error stream is not empty
        """
        arguments = {"Identity": key}
        arguments.update(params or {})
        ps = self._invoke(name, key, arguments)
        if ps.had_errors:
            errors = [str(error) for error in ps.streams.error]
            raise RemoteCommandFailed(name, key, errors[0] if errors else "unknown error")
        logger.info("Exchange command completed | command=%s | sam=%s", name, key)


class ExchangeRemote:
    """Mailbox Subsystem backed by Exchange remote PowerShell.

    Usage:
        remote = ExchangeRemote("http://exch01.company.local/PowerShell/")
        with remote.session() as session:
            if not session.exists("johdo"):
                session.run_command("Enable-Mailbox", "johdo")
    """

    def __init__(
        self,
        uri: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        auth: str = "kerberos",
        operation_timeout: int = OPERATION_TIMEOUT,
    ):
        if not uri:
            raise ValueError("Exchange PowerShell URI is not configured")
        parsed = urlparse(uri)
        self.uri = uri
        self.server = parsed.hostname or uri
        self.ssl = parsed.scheme == "https"
        self.port = parsed.port or (443 if self.ssl else 80)
        self.path = parsed.path.strip("/") or "PowerShell"
        self.username = username or None
        self.password = password or None
        self.auth = auth
        self.operation_timeout = operation_timeout

    @classmethod
    def from_config(cls, cfg) -> "ExchangeRemote":
        return cls(
            cfg.exchange_powershell_uri,
            username=cfg.service_account_username,
            password=cfg.service_account_password,
            auth=cfg.exchange_auth,
        )

    def _wsman(self) -> WSMan:
        return WSMan(
            self.server,
            port=self.port,
            path=self.path,
            ssl=self.ssl,
            username=self.username,
            password=self.password,
            auth=self.auth,
            operation_timeout=self.operation_timeout,
            read_timeout=self.operation_timeout + 10,
        )

    @contextmanager
    def session(self) -> Iterator[ExchangeSession]:
        """Open a runspace pool on the Exchange endpoint.

        Raises:
            RemoteCommandFailed: If the remote session cannot be opened
        """
        try:
            pool = RunspacePool(self._wsman(), configuration_name=EXCHANGE_CONFIGURATION)
            pool.open()
        except _REMOTE_ERRORS as exc:
            raise RemoteCommandFailed("open session", self.server, str(exc)) from exc

        try:
            yield ExchangeSession(pool)
        finally:
            try:
                pool.close()
            except _REMOTE_ERRORS as exc:
                logger.warning("Exchange session close failed | server=%s | error=%s", self.server, exc)
