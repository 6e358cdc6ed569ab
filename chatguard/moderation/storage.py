# Copyright (c) 2025 sprouee
"""Хранилище модерации в Redis.

Ключи:
- messages:{room_id}:{user_id} - недавние сообщения пользователя в комнате (ZSET, score = created_at)
- violations:{user_id} - нарушения пользователя (ZSET, score = created_at)
- punishment:{punishment_id} - наказание (JSON)
- punishments:{user_id} - ID наказаний пользователя (ZSET, score = created_at)
- warnings:{user_id} - предупреждения пользователя (HASH id -> JSON)
- profile:{user_id} - профиль, поле is_banned
- activity_log - журнал активности (LIST, новые первые)

Записи нескольких ключей, которые должны быть согласованы (наказание и флаг бана),
выполняются одной транзакцией MULTI/EXEC.
"""
import json
import time
from typing import Iterable, List, Optional, Type, TypeVar

import redis

from chatguard import config
from chatguard.logging_config import log
from chatguard.moderation.errors import PersistenceError
from chatguard.moderation.models import (
    ActivityAction,
    ActivityLogEntry,
    Message,
    PunishmentRecord,
    ViolationRecord,
    WarningRecord,
)
from chatguard.security.data_protection import pseudonymize_id

# Соединение устанавливается лениво, при первой команде
redis_client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)

# Префиксы ключей
MESSAGES_PREFIX = "messages:"
VIOLATIONS_PREFIX = "violations:"
PUNISHMENT_PREFIX = "punishment:"
USER_PUNISHMENTS_PREFIX = "punishments:"
WARNINGS_PREFIX = "warnings:"
PROFILE_PREFIX = "profile:"
ACTIVITY_LOG_KEY = "activity_log"

BANNED_FIELD = "is_banned"

T = TypeVar("T")


def _persistence_error(operation: str, exc: Exception) -> PersistenceError:
    log.error(f"Ошибка хранилища ({operation}): {exc}")
    return PersistenceError(f"{operation}: {exc}")


def _decode_rows(raw_values: Iterable[str], model: Type[T]) -> List[T]:
    """Разобрать JSON-строки в модели, пропуская повреждённые записи."""
    rows = []
    for raw in raw_values:
        if raw is None:
            continue
        try:
            rows.append(model.from_dict(json.loads(raw)))
        except (json.JSONDecodeError, TypeError, ValueError, KeyError) as exc:
            log.warning(f"Некорректные данные {model.__name__}: {exc}")
    return rows


class RedisModerationStore:
    """Хранилище записей модерации поверх Redis."""

    def __init__(self, client: Optional[redis.Redis] = None):
        """
        Args:
            client: Redis клиент (decode_responses=True). По умолчанию общий клиент из REDIS_URL.
        """
        self.client = client if client is not None else redis_client

    # ========================================================================
    # MESSAGES
    # ========================================================================

    @staticmethod
    def _messages_key(user_id: str, room_id: str) -> str:
        return f"{MESSAGES_PREFIX}{room_id}:{user_id}"

    def save_message(self, message: Message) -> Message:
        """Сохранить сообщение для проверок повторов и частоты.

        Сообщения старше окна истории удаляются, ключ живёт два окна.
        """
        key = self._messages_key(message.user_id, message.room_id)
        window = config.MODERATION_HISTORY_WINDOW_SEC
        try:
            with self.client.pipeline() as pipe:
                pipe.zadd(key, {json.dumps(message.to_dict(), ensure_ascii=False): message.created_at})
                pipe.zremrangebyscore(key, "-inf", message.created_at - window * 2)
                pipe.expire(key, window * 2)
                pipe.execute()
        except redis.RedisError as exc:
            raise _persistence_error("save_message", exc) from exc
        return message

    def query_recent_messages(
        self,
        user_id: str,
        room_id: str,
        since: float,
        limit: int
    ) -> List[Message]:
        """Сообщения пользователя в комнате начиная с since, новые первые."""
        key = self._messages_key(user_id, room_id)
        try:
            raw_values = self.client.zrevrangebyscore(key, "+inf", since, start=0, num=limit)
        except redis.RedisError as exc:
            raise _persistence_error("query_recent_messages", exc) from exc
        return _decode_rows(raw_values, Message)

    # ========================================================================
    # VIOLATIONS
    # ========================================================================

    @staticmethod
    def _violations_key(user_id: str) -> str:
        return f"{VIOLATIONS_PREFIX}{user_id}"

    def insert_violation_records(self, records: List[ViolationRecord]) -> List[ViolationRecord]:
        """Сохранить пачку нарушений одной транзакцией."""
        if not records:
            return []
        try:
            with self.client.pipeline() as pipe:
                for record in records:
                    pipe.zadd(
                        self._violations_key(record.user_id),
                        {json.dumps(record.to_dict(), ensure_ascii=False): record.created_at},
                    )
                pipe.execute()
        except redis.RedisError as exc:
            raise _persistence_error("insert_violation_records", exc) from exc
        return list(records)

    def query_violation_records(self, user_id: str, since: float) -> List[ViolationRecord]:
        """Нарушения пользователя начиная с since, старые первые."""
        try:
            raw_values = self.client.zrangebyscore(self._violations_key(user_id), since, "+inf")
        except redis.RedisError as exc:
            raise _persistence_error("query_violation_records", exc) from exc
        return _decode_rows(raw_values, ViolationRecord)

    # ========================================================================
    # PUNISHMENTS
    # ========================================================================

    @staticmethod
    def _punishment_key(punishment_id: str) -> str:
        return f"{PUNISHMENT_PREFIX}{punishment_id}"

    @staticmethod
    def _user_punishments_key(user_id: str) -> str:
        return f"{USER_PUNISHMENTS_PREFIX}{user_id}"

    @staticmethod
    def _profile_key(user_id: str) -> str:
        return f"{PROFILE_PREFIX}{user_id}"

    def insert_punishment_record(self, record: PunishmentRecord, set_banned: bool = False) -> PunishmentRecord:
        """Сохранить наказание.

        Args:
            record: Наказание
            set_banned: Выставить флаг бана в профиле в той же транзакции
        """
        try:
            with self.client.pipeline() as pipe:
                pipe.set(
                    self._punishment_key(record.id),
                    json.dumps(record.to_dict(), ensure_ascii=False),
                )
                pipe.zadd(self._user_punishments_key(record.user_id), {record.id: record.created_at})
                if set_banned:
                    pipe.hset(self._profile_key(record.user_id), BANNED_FIELD, "1")
                pipe.execute()
        except redis.RedisError as exc:
            raise _persistence_error("insert_punishment_record", exc) from exc
        return record

    def get_punishment_record(self, punishment_id: str) -> Optional[PunishmentRecord]:
        try:
            raw = self.client.get(self._punishment_key(punishment_id))
        except redis.RedisError as exc:
            raise _persistence_error("get_punishment_record", exc) from exc
        rows = _decode_rows([raw], PunishmentRecord)
        return rows[0] if rows else None

    def query_punishments(self, user_id: str) -> List[PunishmentRecord]:
        """Все наказания пользователя, новые первые."""
        try:
            ids = self.client.zrevrange(self._user_punishments_key(user_id), 0, -1)
            if not ids:
                return []
            raw_values = self.client.mget([self._punishment_key(pid) for pid in ids])
        except redis.RedisError as exc:
            raise _persistence_error("query_punishments", exc) from exc
        return _decode_rows(raw_values, PunishmentRecord)

    def query_active_punishments(self, user_id: str, now: Optional[float] = None) -> List[PunishmentRecord]:
        """Активные и не истёкшие наказания на момент now."""
        if now is None:
            now = time.time()
        return [p for p in self.query_punishments(user_id) if p.is_enforced(now)]

    def update_punishment_active(
        self,
        punishment_id: str,
        is_active: bool,
        banned: Optional[bool] = None
    ) -> PunishmentRecord:
        """Изменить активность наказания.

        Args:
            punishment_id: ID наказания
            is_active: Новое значение
            banned: Если указан, флаг бана профиля записывается в той же транзакции

        Raises:
            PersistenceError: если наказание не найдено или запись не удалась
        """
        record = self.get_punishment_record(punishment_id)
        if record is None:
            raise PersistenceError(f"Наказание {punishment_id} не найдено")

        record.is_active = is_active
        try:
            with self.client.pipeline() as pipe:
                pipe.set(
                    self._punishment_key(record.id),
                    json.dumps(record.to_dict(), ensure_ascii=False),
                )
                if banned is not None:
                    pipe.hset(self._profile_key(record.user_id), BANNED_FIELD, "1" if banned else "0")
                pipe.execute()
        except redis.RedisError as exc:
            raise _persistence_error("update_punishment_active", exc) from exc
        return record

    # ========================================================================
    # PROFILE
    # ========================================================================

    def set_user_banned(self, user_id: str, banned: bool) -> None:
        try:
            self.client.hset(self._profile_key(user_id), BANNED_FIELD, "1" if banned else "0")
        except redis.RedisError as exc:
            raise _persistence_error("set_user_banned", exc) from exc
        log.info(f"Ban flag set: user={pseudonymize_id(user_id)}, banned={banned}")

    def is_user_banned(self, user_id: str) -> bool:
        try:
            return self.client.hget(self._profile_key(user_id), BANNED_FIELD) == "1"
        except redis.RedisError as exc:
            raise _persistence_error("is_user_banned", exc) from exc

    # ========================================================================
    # WARNINGS
    # ========================================================================

    @staticmethod
    def _warnings_key(user_id: str) -> str:
        return f"{WARNINGS_PREFIX}{user_id}"

    def insert_warning_record(self, record: WarningRecord) -> WarningRecord:
        try:
            self.client.hset(
                self._warnings_key(record.user_id),
                record.id,
                json.dumps(record.to_dict(), ensure_ascii=False),
            )
        except redis.RedisError as exc:
            raise _persistence_error("insert_warning_record", exc) from exc
        return record

    def query_warnings(self, user_id: str) -> List[WarningRecord]:
        """Все предупреждения пользователя, новые первые."""
        try:
            raw_values = self.client.hvals(self._warnings_key(user_id))
        except redis.RedisError as exc:
            raise _persistence_error("query_warnings", exc) from exc
        warnings = _decode_rows(raw_values, WarningRecord)
        warnings.sort(key=lambda w: w.created_at, reverse=True)
        return warnings

    def acknowledge_warnings(
        self,
        user_id: str,
        warning_ids: Optional[List[str]] = None,
        acknowledged_at: Optional[float] = None
    ) -> int:
        """Подтвердить предупреждения пользователя.

        Args:
            user_id: ID пользователя
            warning_ids: Какие предупреждения подтвердить (None = все неподтверждённые)
            acknowledged_at: Время подтверждения

        Returns:
            Количество подтверждённых предупреждений
        """
        if acknowledged_at is None:
            acknowledged_at = time.time()

        pending = [w for w in self.query_warnings(user_id) if not w.acknowledged]
        if warning_ids is not None:
            wanted = set(warning_ids)
            pending = [w for w in pending if w.id in wanted]
        if not pending:
            return 0

        key = self._warnings_key(user_id)
        try:
            with self.client.pipeline() as pipe:
                for warning in pending:
                    warning.acknowledged = True
                    warning.acknowledged_at = acknowledged_at
                    pipe.hset(key, warning.id, json.dumps(warning.to_dict(), ensure_ascii=False))
                pipe.execute()
        except redis.RedisError as exc:
            raise _persistence_error("acknowledge_warnings", exc) from exc
        return len(pending)

    # ========================================================================
    # ACTIVITY LOG
    # ========================================================================

    def append_activity_log(self, entry: ActivityLogEntry) -> None:
        """Добавить запись в журнал активности."""
        try:
            with self.client.pipeline() as pipe:
                pipe.lpush(ACTIVITY_LOG_KEY, json.dumps(entry.to_dict(), ensure_ascii=False))
                # Ограничиваем размер журнала
                pipe.ltrim(ACTIVITY_LOG_KEY, 0, config.MAX_ACTIVITY_LOG_ENTRIES - 1)
                pipe.execute()
        except redis.RedisError as exc:
            raise _persistence_error("append_activity_log", exc) from exc

    def load_activity_log(
        self,
        limit: int = 20,
        user_id: Optional[str] = None,
        action: Optional[ActivityAction] = None
    ) -> List[ActivityLogEntry]:
        """Загрузить журнал активности, новые первые.

        Args:
            limit: Максимальное количество записей
            user_id: Если указан, фильтровать по пользователю
            action: Если указан, фильтровать по типу действия
        """
        filtered = user_id is not None or action is not None
        # Загружаем больше записей если нужна фильтрация
        fetch_limit = limit * 5 if filtered else limit
        try:
            raw_values = self.client.lrange(ACTIVITY_LOG_KEY, 0, fetch_limit - 1)
        except redis.RedisError as exc:
            raise _persistence_error("load_activity_log", exc) from exc

        entries = []
        for entry in _decode_rows(raw_values, ActivityLogEntry):
            if user_id is not None and entry.user_id != user_id:
                continue
            if action is not None and entry.action != action:
                continue
            entries.append(entry)
            if len(entries) >= limit:
                break
        return entries
