"""Mailbox lifecycle controller and the Exchange remote PowerShell adapter."""
from .lifecycle import MailboxLifecycle
from .remote import ExchangeRemote, ExchangeSession

__all__ = ["MailboxLifecycle", "ExchangeRemote", "ExchangeSession"]
