# Copyright (c) 2025 sprowii
import pytest

from chatguard.moderation.errors import PersistenceError
from chatguard.moderation.models import ViolationType
from chatguard.moderation.validator import (
    MessageValidator,
    classify,
    format_violation_alert,
    get_severity_label,
)

from conftest import NOW, finding, make_message


class TestClassify:

    def test_no_violations(self):
        result = classify([])
        assert result.is_valid
        assert not result.should_block
        assert not result.should_warn
        assert result.max_severity == 0

    def test_any_violation_blocks(self):
        result = classify([finding(1)])
        assert not result.is_valid
        assert result.should_block
        assert not result.should_warn

    def test_warn_never_set_with_block(self):
        for severities in ([1], [2], [5], [1, 1, 1], [2, 3]):
            result = classify([finding(s) for s in severities])
            assert result.should_block
            assert not result.should_warn


class TestMessageValidator:

    def test_clean_message(self, store):
        result = MessageValidator(store).validate("good morning", "u1", "r1", NOW)
        assert result.is_valid
        assert result.violations == []

    def test_whitespace_message_is_blocked(self, store):
        result = MessageValidator(store).validate(" " * 10, "u1", "r1", NOW)
        assert not result.is_valid
        assert result.should_block
        assert {v.type for v in result.violations} == {ViolationType.EMPTY_MESSAGE, ViolationType.SPAM}

    def test_validator_does_not_write(self, store, redis_client):
        MessageValidator(store).validate("you are stupid", "u1", "r1", NOW)
        assert redis_client.keys("*") == []

    def test_uses_recent_history(self, store):
        store.save_message(make_message("same words", NOW - 400))
        store.save_message(make_message("same words", NOW - 20))

        validator = MessageValidator(store)
        assert validator.validate("same words", "u1", "r1", NOW).is_valid

        store.save_message(make_message("same words", NOW - 10))
        result = validator.validate("same words", "u1", "r1", NOW)
        assert [v.type for v in result.violations] == [ViolationType.REPEATED_MESSAGES]
        assert result.should_block

    def test_history_is_per_room(self, store):
        for i in range(2):
            store.save_message(make_message("same words", NOW - i - 1, room_id="other"))
        assert MessageValidator(store).validate("same words", "u1", "r1", NOW).is_valid

    def test_history_limit(self, store):
        for i in range(6):
            store.save_message(make_message(f"msg {i}", NOW - i - 1))
        assert MessageValidator(store, history_limit=4).validate("next", "u1", "r1", NOW).is_valid
        assert not MessageValidator(store).validate("next", "u1", "r1", NOW).is_valid

    def test_history_failure_is_empty_history(self, store, monkeypatch):
        def fail(*args, **kwargs):
            raise PersistenceError("down")

        monkeypatch.setattr(store, "query_recent_messages", fail)
        validator = MessageValidator(store)
        assert validator.validate("hi", "u1", "r1", NOW).is_valid
        assert validator.validate("stupid", "u1", "r1", NOW).should_block

    @pytest.mark.asyncio
    async def test_validate_async(self, store):
        result = await MessageValidator(store).validate_async("stupid", "u1", "r1", NOW)
        assert result.violations[0].type == ViolationType.PROFANITY


class TestAlerts:

    def test_no_alert_for_valid(self):
        assert format_violation_alert(classify([])) is None

    def test_blocked_alert(self):
        alert = format_violation_alert(classify([
            finding(2, ViolationType.PROFANITY, "Contains inappropriate language: stupid"),
        ]))
        lines = alert.splitlines()
        assert lines[0] == "Message Blocked"
        assert "- Profanity: Contains inappropriate language: stupid" in lines

    def test_warning_alert(self):
        result = classify([finding(2, ViolationType.REPEATED_MESSAGES, "Message repeated 3 times")])
        result.should_block = False
        result.should_warn = True
        alert = format_violation_alert(result)
        assert alert.startswith("Content Warning")
        assert "- Repeated messages: Message repeated 3 times" in alert

    def test_severity_labels(self):
        assert get_severity_label(1) == "Low"
        assert get_severity_label(4) == "Critical"
        assert get_severity_label(9) == "Unknown"
