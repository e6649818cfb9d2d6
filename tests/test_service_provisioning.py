"""Tests for the provisioning service (joiner, mover, leaver and mailbox flows)."""
import logging

import pytest

from app.core.errors import (
    ConflictError,
    DuplicateEmployeeIdError,
    IdentifierExhausted,
    NotFoundError,
    RemoteCommandFailed,
)
from app.core.models import CreateUserRequest, UpdateUserRequest
from tests.conftest import DISABLED_OU, USERS_OU


def create(service, employee_id="E100", first="John", last="Doe", **kwargs):
    return service.create_user(CreateUserRequest(employee_id=employee_id, first_name=first, last_name=last, **kwargs))


# ─────────────────────────────────────────────────────────────────────────────
# Joiner
# ─────────────────────────────────────────────────────────────────────────────

class TestCreateUser:
    def test_first_account_uses_first_strategy(self, service, directory):
        result = create(service)

        assert result.short_name == "johdo"
        assert result.common_name == "John Doe"
        assert result.display_name == "John Doe"
        assert result.email == "john.doe@company.com"
        assert result.principal_name == "john.doe@company.com"
        assert result.distinguished_name == f"CN=John Doe,{USERS_OU}"
        assert result.status == "created"
        assert directory.passwords["johdo"] == result.password
        assert len(result.password) == 12

    def test_namesake_gets_next_variant(self, service, directory):
        create(service)
        result = create(service, employee_id="E200")

        assert result.short_name == "jodoe"
        assert result.common_name == "John Doe1"
        assert result.email == "john.doe1@company.com"
        assert result.display_name == "John Doe"

    def test_third_namesake(self, service):
        create(service)
        create(service, employee_id="E200")
        result = create(service, employee_id="E300")
        assert (result.short_name, result.common_name) == ("johdoe", "John Doe2")

    def test_exhausted_candidates(self, service, directory):
        for index, sam in enumerate(["johdo", "jodoe", "johdoe"]):
            directory.add(sam, employee_id=f"X{index}", common_name=f"Someone {index}")

        with pytest.raises(IdentifierExhausted) as excinfo:
            create(service)
        assert excinfo.value.status == 409
        assert directory.creates == []

    def test_duplicate_employee_id_is_rejected_before_any_write(self, service, directory):
        directory.add("other", employee_id="E100")
        with pytest.raises(DuplicateEmployeeIdError) as excinfo:
            create(service)
        assert excinfo.value.status == 409
        assert directory.creates == []
        assert directory.lookups == []

    def test_transliterated_names(self, service):
        result = create(service, first="Жанна", last="Щукина")
        assert result.short_name == "zhash"
        assert result.email == "zhanna.shchukina@company.com"
        assert result.display_name == "Zhanna Shchukina"

    def test_default_container_and_global_groups(self, service, directory):
        create(service)
        assert directory.creates[0][0] == USERS_OU
        assert directory.groups["All Staff"] == ["johdo"]
        assert directory.groups["Berlin Staff"] == []

    def test_office_container_and_groups(self, service, directory):
        result = create(service, office="Berlin")
        assert directory.creates[0][0] == f"OU=Berlin,{USERS_OU}"
        assert result.distinguished_name == f"CN=John Doe,OU=Berlin,{USERS_OU}"
        assert directory.groups["All Staff"] == ["johdo"]
        assert directory.groups["Berlin Staff"] == ["johdo"]

    def test_explicit_container_wins(self, service, directory):
        create(service, office="Berlin", target_ou="OU=Contractors,DC=company,DC=local")
        assert directory.creates[0][0] == "OU=Contractors,DC=company,DC=local"

    def test_missing_group_is_skipped(self, service, directory, caplog):
        with caplog.at_level(logging.WARNING, logger="app.core.provisioning_service"):
            create(service, office="NRW")
        assert directory.groups["NRW Staff"] == ["johdo"]
        assert "Missing Group" in caplog.text

    def test_group_lookup_failure_happens_before_any_write(self, service, directory):
        directory.fail_on["group_exists"] = RemoteCommandFailed("search", "All Staff", "timeout")
        with pytest.raises(RemoteCommandFailed):
            create(service, office="Berlin")
        assert directory.creates == []
        assert "johdo" not in directory.records

    def test_membership_failure_still_returns_credential(self, service, directory, audit_events, caplog):
        directory.fail_on["add_to_group"] = RemoteCommandFailed("modify", "All Staff", "insufficientAccessRights")
        with caplog.at_level(logging.ERROR, logger="app.core.provisioning_service"):
            result = create(service, office="Berlin")

        assert result.short_name == "johdo"
        assert directory.passwords["johdo"] == result.password
        assert audit_events()[-1]["event_type"] == "joiner"
        assert "Failed to add group membership" in caplog.text

    def test_manager_resolved(self, service, directory):
        manager = directory.add("mamu", employee_id="M1", common_name="Max Mustermann")
        create(service, manager_employee_id="M1")
        assert directory.creates[0][1]["manager"] == manager.distinguished_name

    def test_unknown_manager_does_not_block_creation(self, service, directory):
        result = create(service, manager_employee_id="NOPE")
        assert result.short_name == "johdo"
        assert directory.records["johdo"].manager == ""

    def test_employee_number_written_when_schema_allows(self, service, directory):
        create(service, employee_number="4711")
        assert directory.records["johdo"].employee_number == "4711"

    def test_employee_number_skipped_without_schema_support(self, service, directory, schema):
        schema.attributes.clear()
        create(service, employee_number="4711")
        assert "employee_number" not in directory.creates[0][1]

    def test_concurrent_create_surfaces_as_conflict(self, service, directory):
        directory.fail_on["create"] = ConflictError("Directory entry 'CN=John Doe' already exists")
        with pytest.raises(ConflictError, match="concurrent request"):
            create(service)

    def test_audit_event(self, service, audit_events):
        create(service, office="Berlin")
        (event,) = audit_events()
        assert event["event_type"] == "joiner"
        assert event["username"] == "johdo"
        assert event["domain"] == "company.local"
        assert event["details"]["employee_id"] == "E100"
        assert "password" not in event["details"]
        assert event["signature"]

    def test_notifications(self, service, notifier, dispatcher):
        result = create(service, office="Berlin")
        assert dispatcher.drain(5)

        admin = notifier.to("it-admin@company.com")
        assert len(admin) == 1
        assert f"Password - {result.password}" in admin[0]["body"]
        for address in ("berlin-office@company.com", "berlin-hr@company.com"):
            (message,) = notifier.to(address)
            assert result.password not in message["body"]

    def test_notification_failure_does_not_affect_result(self, service, notifier, dispatcher):
        notifier.fail_for.add("it-admin@company.com")
        result = create(service)
        assert dispatcher.drain(5)
        assert result.short_name == "johdo"

    def test_stopped_dispatcher_does_not_affect_result(self, service, directory, dispatcher, caplog):
        dispatcher.shutdown()
        with caplog.at_level(logging.ERROR, logger="app.core.notifications"):
            result = create(service, first="Ann", last="Lee")

        assert result.short_name == "annle"
        assert "annle" in directory.records
        assert "Failed to queue email" in caplog.text


# ─────────────────────────────────────────────────────────────────────────────
# Mover / Leaver
# ─────────────────────────────────────────────────────────────────────────────

class TestUpdateUser:
    @pytest.fixture()
    def existing(self, service):
        return create(service, office="Moscow")

    def test_unknown_employee_id(self, service):
        with pytest.raises(NotFoundError) as excinfo:
            service.update_user(UpdateUserRequest(employee_id="NOPE", office="NRW"))
        assert excinfo.value.status == 404

    def test_change_is_applied_audited_and_notified(self, service, existing, notifier, dispatcher, audit_events):
        result = service.update_user(UpdateUserRequest(employee_id="E100", office="NRW"))

        assert [c.to_dict() for c in result.changes] == [
            {"field": "office", "oldValue": "Moscow", "newValue": "NRW"}
        ]
        assert result.user.office == "NRW"
        assert audit_events()[-1]["event_type"] == "mover"

        assert dispatcher.drain(5)
        updates = [m for m in notifier.to("it-admin@company.com") if m["subject"] == "User account updated"]
        assert len(updates) == 1
        assert "Old value: Moscow" in updates[0]["body"]

    def test_no_changes_no_write_no_notification(self, service, existing, directory, notifier, dispatcher):
        result = service.update_user(UpdateUserRequest(employee_id="E100", office="Moscow"))
        assert result.changes == []
        assert directory.writes == []
        assert dispatcher.drain(5)
        assert not [m for m in notifier.sent if m["subject"] == "User account updated"]

    def test_disable_is_a_leaver_event(self, service, existing, directory, audit_events):
        result = service.update_user(UpdateUserRequest(employee_id="E100", account_state="disabled"))
        assert result.user.enabled is False
        assert audit_events()[-1]["event_type"] == "leaver"

    def test_record_in_disabled_container_is_not_updated(self, service, directory):
        directory.add("olus", employee_id="E900", common_name="Old User",
                      distinguished_name=f"CN=Old User,{DISABLED_OU}")
        with pytest.raises(NotFoundError):
            service.update_user(UpdateUserRequest(employee_id="E900", office="NRW"))
        assert directory.writes == []

    def test_name_change_renames(self, service, existing, directory):
        result = service.update_user(UpdateUserRequest(employee_id="E100", last_name="Smith"))
        assert result.user.distinguished_name == f"CN=John Smith,{USERS_OU}"
        assert result.user.display_name == "John Smith"
        assert directory.renames == [("johdo", "John Smith")]


def test_get_user(service):
    create(service)
    assert service.get_user("johdo").employee_id == "E100"
    with pytest.raises(NotFoundError):
        service.get_user("nobody")


# ─────────────────────────────────────────────────────────────────────────────
# Mailbox
# ─────────────────────────────────────────────────────────────────────────────

class TestMailbox:
    def test_enable_sends_onboarding_mail(self, service, mailbox_subsystem, notifier, dispatcher, audit_events):
        create(service)
        result = service.enable_mailbox("johdo")

        assert result.status == "enabled"
        assert result.was_already_enabled is False
        assert "johdo" in mailbox_subsystem.mailboxes
        assert audit_events()[-1]["event_type"] == "mailbox_enable"

        assert dispatcher.drain(5)
        (welcome,) = notifier.to("john.doe@company.com")
        assert welcome["subject"] == "Welcome"
        assert welcome["body"] == "Your San is johdo. Welcome to our company"

    def test_enable_twice_reports_already_enabled(self, service, mailbox_subsystem):
        create(service)
        service.enable_mailbox("johdo")
        second = service.enable_mailbox("johdo")
        assert second.was_already_enabled is True
        assert second.status == "already_enabled"
        assert mailbox_subsystem.names().count("Enable-Mailbox") == 1

    def test_enable_without_directory_record_skips_mail(self, service, notifier, dispatcher):
        result = service.enable_mailbox("ghost")
        assert result.mailbox_enabled is True
        assert dispatcher.drain(5)
        assert notifier.sent == []

    def test_lookup_failure_after_enable_still_returns_result(self, service, directory, dispatcher, notifier):
        create(service)
        directory.fail_on["find_by_unique_key"] = RemoteCommandFailed("search", "johdo", "timeout")
        result = service.enable_mailbox("johdo")
        assert result.status == "enabled"
        assert dispatcher.drain(5)
        assert notifier.to("john.doe@company.com") == []

    def test_enable_failure_propagates(self, service, mailbox_subsystem):
        mailbox_subsystem.fail_command = "Set-CASMailbox"
        with pytest.raises(RemoteCommandFailed, match="Set-CASMailbox"):
            service.enable_mailbox("johdo")

    def test_disable(self, service, mailbox_subsystem, audit_events):
        mailbox_subsystem.mailboxes.add("johdo")
        result = service.disable_mailbox("johdo")
        assert result.status == "disabled"
        assert "johdo" not in mailbox_subsystem.mailboxes
        assert audit_events()[-1]["event_type"] == "mailbox_disable"
