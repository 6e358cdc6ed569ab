# Copyright (c) 2025 sprowii
import fakeredis
import pytest

from chatguard.moderation.models import Message, ViolationFinding, ViolationType
from chatguard.moderation.storage import RedisModerationStore
from chatguard.security.data_protection import configure_encryption

# Фиксированное "текущее" время для детерминированных тестов
NOW = 1_700_000_000.0


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def store(redis_client):
    return RedisModerationStore(redis_client)


@pytest.fixture
def down_store():
    """Хранилище, у которого Redis недоступен."""
    server = fakeredis.FakeServer()
    server.connected = False
    return RedisModerationStore(fakeredis.FakeRedis(server=server, decode_responses=True))


@pytest.fixture
def no_encryption():
    configure_encryption(None)
    yield
    configure_encryption(None)


def make_message(content, created_at, user_id="u1", room_id="r1"):
    return Message.create(content, user_id, room_id, created_at=created_at)


def finding(severity, violation_type=ViolationType.SPAM, description=None):
    return ViolationFinding(
        type=violation_type,
        description=description or f"{violation_type.value} severity {severity}",
        severity=severity,
    )
