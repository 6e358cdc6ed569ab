# Copyright (c) 2025 sprowii
"""Тесты блокировок пользователя поверх Redis."""
import pytest

from chatguard.moderation.errors import PersistenceError
from chatguard.moderation.escalation import EscalationEngine, EscalationResult
from chatguard.moderation.locks import UserLocks
from chatguard.moderation.models import EscalationPolicy, PunishmentRecord, PunishmentType
from chatguard.moderation.punishments import PunishmentStore

from conftest import NOW, finding


class TestUserLocks:

    def test_released_after_block(self, redis_client):
        locks = UserLocks(redis_client)
        with locks.hold("u1"):
            assert redis_client.exists("lock:user:u1")
        assert redis_client.keys("lock:*") == []

    def test_released_on_error(self, redis_client):
        locks = UserLocks(redis_client)
        with pytest.raises(RuntimeError):
            with locks.hold("u1"):
                raise RuntimeError("boom")
        assert redis_client.keys("lock:*") == []

    def test_busy_lock_times_out(self, redis_client):
        with UserLocks(redis_client).hold("u1"):
            with pytest.raises(PersistenceError):
                with UserLocks(redis_client, wait=0.2).hold("u1"):
                    pass

    def test_other_users_not_blocked(self, redis_client):
        with UserLocks(redis_client).hold("u1"):
            with UserLocks(redis_client, wait=0.2).hold("u2"):
                assert redis_client.exists("lock:user:u2")

    def test_redis_down(self, down_store):
        with pytest.raises(PersistenceError):
            with UserLocks(down_store.client).hold("u1"):
                pass


class TestSharedAcrossComponents:

    def test_nothing_retained_after_escalation(self, store, redis_client):
        engine = EscalationEngine(store, policy=EscalationPolicy())
        for i in range(50):
            engine.process_violation(f"user-{i}", [finding(1)], timestamp=NOW)

        assert redis_client.keys("lock:*") == []
        assert len(redis_client.keys("violations:*")) == 50

    def test_separate_engines_serialize_same_user(self, store):
        engine = EscalationEngine(store, policy=EscalationPolicy(), locks=UserLocks(store.client, wait=0.2))

        with UserLocks(store.client).hold("u1"):
            result = engine.process_violation("u1", [finding(1)], timestamp=NOW)

        assert result == EscalationResult()
        assert store.query_violation_records("u1", since=0) == []
        assert engine.process_violation("u1", [finding(1)], timestamp=NOW).recent_violation_count == 1

    def test_revoke_waits_for_escalation_lock(self, store):
        ban = PunishmentRecord.create("u1", PunishmentType.BAN, "x", created_at=NOW)
        store.insert_punishment_record(ban, set_banned=True)
        engine = EscalationEngine(store, policy=EscalationPolicy())
        punishments = PunishmentStore(store, UserLocks(store.client, wait=0.2))

        with engine.locks.hold("u1"):
            with pytest.raises(PersistenceError):
                punishments.revoke(ban.id, now=NOW)

        assert store.is_user_banned("u1")
        punishments.revoke(ban.id, now=NOW)
        assert not store.is_user_banned("u1")
