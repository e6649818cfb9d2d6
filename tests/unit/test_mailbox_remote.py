"""Tests for the Exchange remote PowerShell adapter with pypsrp mocked out."""
from unittest.mock import MagicMock

import pytest
from pypsrp.exceptions import WinRMError

from app.core.errors import RemoteCommandFailed
from app.core.mailbox import remote
from app.core.mailbox.remote import ExchangeRemote, ExchangeSession


@pytest.fixture()
def powershell(monkeypatch):
    ps = MagicMock()
    ps.had_errors = False
    ps.output = []
    ps.streams.error = []
    monkeypatch.setattr(remote, "PowerShell", MagicMock(return_value=ps))
    return ps


def test_uri_parsing():
    exchange = ExchangeRemote("https://exch01.company.local:5986/PowerShell/")
    assert exchange.server == "exch01.company.local"
    assert exchange.port == 5986
    assert exchange.ssl is True
    assert exchange.path == "PowerShell"


def test_uri_defaults():
    exchange = ExchangeRemote("http://exch01.company.local/PowerShell/")
    assert (exchange.port, exchange.ssl) == (80, False)


def test_missing_uri_rejected():
    with pytest.raises(ValueError):
        ExchangeRemote("")


def test_exists_true_when_output(powershell):
    powershell.output = [{"Name": "johdo"}]
    assert ExchangeSession(MagicMock()).exists("johdo") is True
    powershell.add_cmdlet.assert_called_once_with("Get-Mailbox")
    powershell.add_parameter.assert_called_once_with("Identity", "johdo")


def test_exists_false_on_error_stream(powershell):
    powershell.had_errors = True
    assert ExchangeSession(MagicMock()).exists("johdo") is False


def test_run_command_passes_identity_and_params(powershell):
    ExchangeSession(MagicMock()).run_command("Set-Mailbox", "johdo", {"HiddenFromAddressListsEnabled": False})
    powershell.add_cmdlet.assert_called_once_with("Set-Mailbox")
    calls = [c[0] for c in powershell.add_parameter.call_args_list]
    assert calls == [("Identity", "johdo"), ("HiddenFromAddressListsEnabled", False)]


def test_run_command_error_stream_raises(powershell):
    powershell.had_errors = True
    powershell.streams.error = ["The operation couldn't be performed because 'johdo' couldn't be found."]
    with pytest.raises(RemoteCommandFailed) as excinfo:
        ExchangeSession(MagicMock()).run_command("Enable-Mailbox", "johdo")
    assert excinfo.value.command == "Enable-Mailbox"
    assert "couldn't be found" in excinfo.value.reason


def test_transport_error_raises(powershell):
    powershell.invoke.side_effect = WinRMError("connection reset")
    with pytest.raises(RemoteCommandFailed):
        ExchangeSession(MagicMock()).run_command("Disable-Mailbox", "johdo", {"Confirm": False})


def test_session_opens_exchange_configuration(monkeypatch):
    pool = MagicMock()
    pool_cls = MagicMock(return_value=pool)
    wsman_cls = MagicMock()
    monkeypatch.setattr(remote, "RunspacePool", pool_cls)
    monkeypatch.setattr(remote, "WSMan", wsman_cls)

    exchange = ExchangeRemote("http://exch01.company.local/PowerShell/", username="svc", password="pw")
    with exchange.session() as session:
        assert session.pool is pool

    assert pool_cls.call_args[1]["configuration_name"] == "Microsoft.Exchange"
    assert wsman_cls.call_args[0][0] == "exch01.company.local"
    pool.open.assert_called_once()
    pool.close.assert_called_once()


def test_session_open_failure(monkeypatch):
    pool = MagicMock()
    pool.open.side_effect = WinRMError("401 unauthorized")
    monkeypatch.setattr(remote, "RunspacePool", MagicMock(return_value=pool))
    monkeypatch.setattr(remote, "WSMan", MagicMock())

    with pytest.raises(RemoteCommandFailed) as excinfo:
        with ExchangeRemote("http://exch01.company.local/PowerShell/").session():
            pass
    assert excinfo.value.command == "open session"
