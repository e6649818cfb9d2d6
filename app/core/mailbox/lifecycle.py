"""Mailbox lifecycle: converge a mailbox to Enabled or Disabled.

No state is kept between calls. Every call asks the mailbox subsystem whether
the mailbox exists and then issues idempotent commands, so repeating a call is
always safe and repairs configuration drift.
"""
from __future__ import annotations

import logging

from app.core.models import MailboxResult
from app.core.ports import MailboxSubsystem

logger = logging.getLogger(__name__)

ENABLE_COMMAND = "Enable-Mailbox"
DISABLE_COMMAND = "Disable-Mailbox"
UNHIDE_COMMAND = "Set-Mailbox"
ACCESS_COMMAND = "Set-CASMailbox"

UNHIDE_PARAMS = {"HiddenFromAddressListsEnabled": False}
ACCESS_PARAMS = {
    "ActiveSyncEnabled": True,
    "OWAforDevicesEnabled": True,
    "OWAEnabled": True,
}


class MailboxLifecycle:
    def __init__(self, subsystem: MailboxSubsystem):
        self.subsystem = subsystem

    def ensure_enabled(self, key: str) -> MailboxResult:
        """Create the mailbox if missing, then always re-apply its configuration.

        Raises:
            RemoteCommandFailed: If any command fails; later commands are not run
        """
        with self.subsystem.session() as session:
            was_already_enabled = session.exists(key)
            if not was_already_enabled:
                session.run_command(ENABLE_COMMAND, key)
                logger.info("Mailbox created | sam=%s", key)
            else:
                logger.info("Mailbox already exists, reapplying settings | sam=%s", key)

            session.run_command(UNHIDE_COMMAND, key, UNHIDE_PARAMS)
            session.run_command(ACCESS_COMMAND, key, ACCESS_PARAMS)

        return MailboxResult(
            short_name=key,
            mailbox_enabled=True,
            was_already_enabled=was_already_enabled,
            status="already_enabled" if was_already_enabled else "enabled",
        )

    def ensure_disabled(self, key: str) -> MailboxResult:
        """Issue the disable command unconditionally."""
        with self.subsystem.session() as session:
            session.run_command(DISABLE_COMMAND, key, {"Confirm": False})
        logger.info("Mailbox disabled | sam=%s", key)
        return MailboxResult(
            short_name=key,
            mailbox_enabled=False,
            was_already_enabled=False,
            status="disabled",
        )
