# Copyright (c) 2025 sprouee
import os

from dotenv import load_dotenv

load_dotenv()


def _resolve_redis_url(raw_url: str) -> str:
    if ".upstash.io" in raw_url and raw_url.startswith("redis://"):
        return "rediss" + raw_url[len("redis") :]
    return raw_url


def _env_int(name: str, default: int) -> int:
    raw_value = os.getenv(name)
    if not raw_value:
        return default
    try:
        return int(raw_value)
    except ValueError:
        raise RuntimeError(f"Переменная окружения {name} должна быть целым числом, получено: {raw_value}")


REDIS_URL = _resolve_redis_url(os.getenv("REDIS_URL", "redis://localhost:6379/0"))

# Окна истории (секунды)
MODERATION_HISTORY_WINDOW_SEC = _env_int("MODERATION_HISTORY_WINDOW_SEC", 300)
MODERATION_HISTORY_LIMIT = _env_int("MODERATION_HISTORY_LIMIT", 10)
MODERATION_ESCALATION_WINDOW_SEC = _env_int("MODERATION_ESCALATION_WINDOW_SEC", 24 * 3600)
MODERATION_MAX_MESSAGE_LENGTH = _env_int("MODERATION_MAX_MESSAGE_LENGTH", 2000)

# Пороги эскалации
MOD_BAN_VIOLATION_COUNT = _env_int("MOD_BAN_VIOLATION_COUNT", 5)
MOD_BAN_SEVERITY = _env_int("MOD_BAN_SEVERITY", 10)
MOD_MUTE_VIOLATION_COUNT = _env_int("MOD_MUTE_VIOLATION_COUNT", 3)
MOD_MUTE_SEVERITY = _env_int("MOD_MUTE_SEVERITY", 6)
MOD_WARNING_SEVERITY = _env_int("MOD_WARNING_SEVERITY", 3)
MOD_MUTE_DURATION_MIN = _env_int("MOD_MUTE_DURATION_MIN", 60)
MOD_BAN_DURATION_MIN = _env_int("MOD_BAN_DURATION_MIN", 1440)

# Блокировка пользователя на время эскалации и отзыва (секунды)
MODERATION_LOCK_TIMEOUT_SEC = _env_int("MODERATION_LOCK_TIMEOUT_SEC", 30)
MODERATION_LOCK_WAIT_SEC = _env_int("MODERATION_LOCK_WAIT_SEC", 10)

MAX_ACTIVITY_LOG_ENTRIES =_env_int("MAX_ACTIVITY_LOG_ENTRIES", 1000)
MAX_APPEAL_LENGTH = 1000
