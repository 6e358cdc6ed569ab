# Copyright (c) 2025 sprowii
import pytest
from cryptography.fernet import Fernet

from chatguard.moderation.activity import ActivityLogger, format_activity_details, read_appeal_text
from chatguard.moderation.errors import InvalidInputError, PersistenceError
from chatguard.moderation.models import (
    ActivityAction,
    MessageSentDetails,
    PunishmentRecord,
    PunishmentType,
    ViolationType,
)
from chatguard.moderation.recorder import ViolationRecorder
from chatguard.security.data_protection import configure_encryption

from conftest import NOW, finding


@pytest.fixture
def activity(store):
    return ActivityLogger(store)


@pytest.fixture
def mute(store):
    record = PunishmentRecord.create("u1", PunishmentType.MUTE, "spam", 60, created_at=NOW)
    return store.insert_punishment_record(record)


@pytest.fixture
def encryption():
    configure_encryption(Fernet.generate_key().decode())
    yield
    configure_encryption(None)


class TestActivityLogger:

    def test_session(self, activity, store):
        entry = activity.log_session("u1", ActivityAction.LOGIN, timestamp=NOW, ip_address="10.0.0.1")
        assert entry.details.timestamp == NOW
        assert store.load_activity_log(user_id="u1") == [entry]

    def test_mismatched_details_raise(self, activity):
        with pytest.raises(InvalidInputError):
            activity.log_activity("u1", ActivityAction.LOGOUT, MessageSentDetails("r1", "room", 1, False))

    def test_store_failure_is_swallowed(self, down_store):
        assert ActivityLogger(down_store).log_session("u1", ActivityAction.LOGIN) is None

    def test_message_sent(self, activity):
        entry = activity.log_message_sent("u1", "r1", "general", 5, has_violations=False, timestamp=NOW)
        assert entry.action is ActivityAction.MESSAGE_SENT
        assert format_activity_details(entry) == "Room: general (5 chars)"

    def test_unknown_room_name(self, activity):
        entry = activity.log_message_sent("u1", "r1", "", 12, has_violations=True)
        assert format_activity_details(entry) == "Room: Unknown (12 chars)"


class TestAppeals:

    def test_plain_appeal(self, activity, mute, no_encryption):
        entry = activity.log_appeal("u1", mute, "I was joking", timestamp=NOW)
        assert entry.details.punishment_id == mute.id
        assert entry.details.appeal_text == "I was joking"
        assert format_activity_details(entry) == "mute appeal"

    def test_encrypted_appeal(self, activity, store, mute, encryption):
        entry = activity.log_appeal("u1", mute, "Please unmute me", timestamp=NOW)
        assert entry.details.appeal_text.startswith("enc:")

        loaded = store.load_activity_log(action=ActivityAction.PUNISHMENT_APPEAL)[0]
        assert read_appeal_text(loaded) == "Please unmute me"

    def test_max_length_appeal_survives_encryption(self, activity, store, mute, encryption):
        activity.log_appeal("u1", mute, "x" * 1000)
        loaded = store.load_activity_log(action=ActivityAction.PUNISHMENT_APPEAL)[0]
        assert read_appeal_text(loaded) == "x" * 1000

    @pytest.mark.parametrize("text", ["", "  \n", "y" * 1001])
    def test_invalid_appeal_text(self, activity, mute, text):
        with pytest.raises(InvalidInputError):
            activity.log_appeal("u1", mute, text)

    def test_appeal_store_failure_raises(self, down_store, mute):
        with pytest.raises(PersistenceError):
            ActivityLogger(down_store).log_appeal("u1", mute, "please")

    def test_read_appeal_text_ignores_other_actions(self, activity):
        entry = activity.log_session("u1", ActivityAction.LOGIN)
        assert read_appeal_text(entry) is None
        assert format_activity_details(entry) is None


class TestViolationRecorder:

    def test_no_findings_no_writes(self, store, redis_client):
        assert ViolationRecorder(store).record("u1", []) == []
        assert redis_client.keys("*") == []

    def test_records_each_finding(self, store):
        findings = [finding(1), finding(4, ViolationType.HARASSMENT), finding(2, ViolationType.PROFANITY)]
        records = ViolationRecorder(store).record("u1", findings, message_id="m1", timestamp=NOW)

        assert [r.violation_type for r in records] == [
            ViolationType.SPAM,
            ViolationType.HARASSMENT,
            ViolationType.PROFANITY,
        ]
        assert all(r.detected_by == "system" for r in records)
        assert all(r.message_id == "m1" and r.created_at == NOW for r in records)
        assert len(store.query_violation_records("u1", since=NOW)) == 3

    def test_logs_worst_violation(self, store):
        findings = [finding(1), finding(4, ViolationType.HARASSMENT)]
        records = ViolationRecorder(store).record("u1", findings, timestamp=NOW)

        entries = store.load_activity_log(action=ActivityAction.VIOLATION_DETECTED)
        assert len(entries) == 1
        details = entries[0].details
        assert details.violation_id == records[1].id
        assert details.violation_type == "harassment"
        assert details.severity == 4
        assert details.violation_count == 2
        assert format_activity_details(entries[0]) == "Type: harassment (Severity: 4)"

    def test_insert_failure_raises(self, store, monkeypatch):
        def fail(records):
            raise PersistenceError("boom")

        monkeypatch.setattr(store, "insert_violation_records", fail)
        with pytest.raises(PersistenceError):
            ViolationRecorder(store).record("u1", [finding(2)])
        assert store.load_activity_log() == []
