# Copyright (c) 2025 sprowii
"""Тесты полного цикла отправки сообщения через контроллер."""
import pytest

from chatguard.moderation.controller import (
    ModerationController,
    SendStatus,
    get_moderation_controller,
    init_moderation_controller,
)
from chatguard.moderation.errors import InvalidInputError, PersistenceError
from chatguard.moderation.models import (
    ActivityAction,
    EscalationPolicy,
    PunishmentType,
    ViolationType,
)

from conftest import NOW, finding


@pytest.fixture
def controller(store):
    return ModerationController(store, policy=EscalationPolicy())


def send(controller, content, at, user_id="u1"):
    return controller.handle_outgoing_message(content, user_id, "r1", room_name="general", timestamp=at)


class TestSendFlow:

    def test_clean_message_is_sent(self, controller, store):
        outcome = send(controller, "good morning", NOW)

        assert outcome.status == SendStatus.SENT
        assert outcome.sent
        assert outcome.alert is None
        assert outcome.escalation is None
        saved = store.query_recent_messages("u1", "r1", since=NOW - 1, limit=10)
        assert [m.id for m in saved] == [outcome.message.id]

        entries = controller.get_activity_log(action=ActivityAction.MESSAGE_SENT)
        assert len(entries) == 1
        assert entries[0].details.room_name == "general"
        assert entries[0].details.message_length == len("good morning")
        assert not entries[0].details.has_violations

    def test_violation_blocks_and_is_recorded(self, controller, store):
        outcome = send(controller, "you are stupid", NOW)

        assert outcome.status == SendStatus.BLOCKED
        assert not outcome.sent
        assert outcome.message is None
        assert outcome.alert.startswith("Message Blocked")
        assert store.query_recent_messages("u1", "r1", since=0, limit=10) == []

        records = store.query_violation_records("u1", since=0)
        assert len(records) == 1
        assert records[0].violation_type == ViolationType.PROFANITY
        assert records[0].message_id is None
        assert outcome.escalation.punishment_type is None
        assert controller.get_activity_log(action=ActivityAction.MESSAGE_SENT) == []

    def test_repeated_violations_lead_to_mute(self, controller):
        outcomes = [send(controller, "you are stupid", NOW + i) for i in range(3)]

        assert [o.status for o in outcomes] == [SendStatus.BLOCKED] * 3
        assert outcomes[2].escalation.punishment_type == PunishmentType.MUTE

        assert send(controller, "sorry", NOW + 3).status == SendStatus.REJECTED_MUTED
        assert send(controller, "sorry", NOW + 2 + 3600).status == SendStatus.SENT

    def test_rejected_messages_are_not_recorded(self, controller, store):
        controller.process_violation("u1", [finding(4), finding(2)], timestamp=NOW)
        before = len(store.query_violation_records("u1", since=0))

        outcome = send(controller, "you are stupid", NOW + 1)

        assert outcome.status == SendStatus.REJECTED_MUTED
        assert outcome.validation is None
        assert len(store.query_violation_records("u1", since=0)) == before

    def test_repeated_message_detected_on_third_send(self, controller):
        assert send(controller, "hi all", NOW).status == SendStatus.SENT
        assert send(controller, "hi all", NOW + 1).status == SendStatus.SENT

        outcome = send(controller, "hi all", NOW + 2)
        assert outcome.status == SendStatus.BLOCKED
        assert [v.type for v in outcome.validation.violations] == [ViolationType.REPEATED_MESSAGES]

    def test_rapid_posting(self, controller):
        for i in range(5):
            assert send(controller, f"message number {i}", NOW + i).sent

        outcome = send(controller, "one more", NOW + 5)
        assert outcome.status == SendStatus.BLOCKED
        assert [v.type for v in outcome.validation.violations] == [ViolationType.RAPID_POSTING]
        assert outcome.escalation.punishment_type == PunishmentType.WARNING
        assert len(controller.get_unacknowledged_warnings("u1")) == 1

    def test_ban_rejects_until_expiry(self, controller, store):
        result = controller.process_violation("u1", [finding(5), finding(5)], timestamp=NOW)
        assert result.punishment_type == PunishmentType.BAN

        assert send(controller, "hello?", NOW + 10).status == SendStatus.REJECTED_BANNED

        outcome = send(controller, "back again", NOW + 1440 * 60)
        assert outcome.status == SendStatus.SENT
        assert not store.is_user_banned("u1")

    def test_revoked_ban_allows_sending(self, controller, store):
        result = controller.process_violation("u1", [finding(5), finding(5)], timestamp=NOW)
        controller.revoke_punishment(result.punishment.id, revoked_by="admin", now=NOW + 1)

        assert not store.is_user_banned("u1")
        assert send(controller, "thanks", NOW + 2).status == SendStatus.SENT

    def test_store_down_fails_quietly(self, down_store):
        controller = ModerationController(down_store, policy=EscalationPolicy())

        assert send(controller, "good morning", NOW).status == SendStatus.FAILED

        blocked = send(controller, "you are stupid", NOW)
        assert blocked.status == SendStatus.BLOCKED
        assert blocked.escalation.violations == []
        assert blocked.escalation.punishment_type is None

    @pytest.mark.asyncio
    async def test_handle_outgoing_message_async(self, controller):
        outcome = await controller.handle_outgoing_message_async("good morning", "u1", "r1", "general", NOW)
        assert outcome.status == SendStatus.SENT
        assert await controller.can_send_messages_async("u1", NOW)


class TestAppeals:

    def test_submit_appeal(self, controller, no_encryption):
        result = controller.process_violation("u1", [finding(4), finding(2)], timestamp=NOW)

        entry = controller.submit_appeal("u1", result.punishment.id, "It was a joke", timestamp=NOW + 5)

        assert entry.action is ActivityAction.PUNISHMENT_APPEAL
        assert entry.details.punishment_type == "mute"
        logged = controller.get_activity_log(action=ActivityAction.PUNISHMENT_APPEAL)
        assert [e.id for e in logged] == [entry.id]

    def test_cannot_appeal_someone_elses_punishment(self, controller):
        result = controller.process_violation("u1", [finding(4), finding(2)], timestamp=NOW)
        with pytest.raises(InvalidInputError):
            controller.submit_appeal("u2", result.punishment.id, "let them talk")

    def test_unknown_punishment(self, controller):
        with pytest.raises(PersistenceError):
            controller.submit_appeal("u1", "missing", "please")


class TestWarningsAndSessions:

    def test_acknowledge_all(self, controller):
        controller.process_violation("u1", [finding(3)], timestamp=NOW)
        controller.process_violation("u1", [finding(3)], timestamp=NOW + 1)

        assert len(controller.get_unacknowledged_warnings("u1")) == 2
        assert controller.acknowledge_all_warnings("u1", NOW + 2) == 2
        assert controller.get_unacknowledged_warnings("u1") == []

    def test_login_logout(self, controller):
        controller.log_login("u1", timestamp=NOW, ip_address="10.0.0.1")
        controller.log_logout("u1", timestamp=NOW + 60)

        actions = [e.action for e in controller.get_activity_log(user_id="u1")]
        assert actions == [ActivityAction.LOGOUT, ActivityAction.LOGIN]


def test_global_controller(store):
    controller = init_moderation_controller(store, EscalationPolicy())
    assert get_moderation_controller() is controller
    assert controller.store is store
