# Copyright (c) 2025 sprouee
"""Поочерёдная обработка операций модерации одного пользователя.

Эскалация читает историю нарушений и по ней решает, выдавать ли
наказание. Два почти одновременных нарушения одного пользователя
не должны прочитать одну и ту же историю "ниже порога", даже если
их обрабатывают разные процессы. Поэтому блокировка живёт в том же
Redis, что и записи модерации, и удаляется при освобождении.
Разные пользователи обрабатываются параллельно.
"""
from contextlib import contextmanager
from typing import Iterator

import redis

from chatguard import config
from chatguard.logging_config import log
from chatguard.moderation.errors import PersistenceError
from chatguard.security.data_protection import pseudonymize_id

LOCK_PREFIX = "lock:user:"


class UserLocks:
    """Блокировки по user_id поверх Redis (redis-py Lock)."""

    def __init__(
        self,
        client: redis.Redis,
        timeout: int = config.MODERATION_LOCK_TIMEOUT_SEC,
        wait: float = config.MODERATION_LOCK_WAIT_SEC
    ):
        """
        Args:
            client: Redis клиент хранилища
            timeout: Через сколько секунд блокировка снимается сама (упавший процесс)
            wait: Сколько секунд ждать занятую блокировку
        """
        self.client = client
        self.timeout = timeout
        self.wait = wait

    @staticmethod
    def key(user_id: str) -> str:
        return f"{LOCK_PREFIX}{user_id}"

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        """Выполнить блок, удерживая блокировку пользователя.

        Raises:
            PersistenceError: Redis недоступен или блокировка занята дольше wait
        """
        lock = self.client.lock(self.key(user_id), timeout=self.timeout, blocking_timeout=self.wait)
        try:
            acquired = lock.acquire()
        except redis.RedisError as exc:
            log.error(f"Ошибка блокировки {pseudonymize_id(user_id)}: {exc}")
            raise PersistenceError(f"lock: {exc}") from exc
        if not acquired:
            log.error(f"Блокировка {pseudonymize_id(user_id)} занята дольше {self.wait} с")
            raise PersistenceError(f"Блокировка пользователя занята дольше {self.wait} с")

        try:
            yield
        finally:
            try:
                lock.release()
            except redis.RedisError as exc:
                # Блокировка истекла по timeout раньше, чем закончилась работа
                log.warning(f"Блокировка {pseudonymize_id(user_id)} не освобождена: {exc}")
