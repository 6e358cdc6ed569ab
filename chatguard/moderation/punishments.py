# Copyright (c) 2025 sprowii
"""Действующие наказания, отзыв и предупреждения.

Истечение наказаний проверяется при чтении: наказание перестаёт
действовать в момент expires_at без какой-либо записи в хранилище.
"""
import asyncio
import time
from typing import List, Optional

from chatguard.logging_config import log
from chatguard.moderation.errors import ConsistencyError, PersistenceError
from chatguard.moderation.locks import UserLocks
from chatguard.moderation.models import PunishmentRecord, PunishmentType, WarningRecord
from chatguard.moderation.storage import RedisModerationStore
from chatguard.security.data_protection import pseudonymize_id, safe_log_action

STATUS_ALL = "all"
STATUS_ACTIVE = "active"
STATUS_EXPIRED = "expired"


class PunishmentStore:
    """Запросы к наказаниям и проверка права отправлять сообщения."""

    def __init__(self, store: RedisModerationStore, locks: Optional[UserLocks] = None):
        """
        Args:
            store: Хранилище модерации
            locks: Блокировки пользователей (общие с EscalationEngine)
        """
        self.store = store
        self.locks = locks or UserLocks(store.client)

    # ========================================================================
    # GATE
    # ========================================================================

    def active_punishments(self, user_id: str, now: Optional[float] = None) -> List[PunishmentRecord]:
        """Активные и не истёкшие наказания пользователя."""
        return self.store.query_active_punishments(user_id, now)

    def can_send_messages(self, user_id: str, now: Optional[float] = None) -> bool:
        """Нет ли у пользователя действующего мута или бана."""
        return not any(p.is_enforcing for p in self.active_punishments(user_id, now))

    def has_active_ban(self, user_id: str, now: Optional[float] = None) -> bool:
        return any(
            p.punishment_type == PunishmentType.BAN
            for p in self.active_punishments(user_id, now)
        )

    async def active_punishments_async(self, user_id: str, now: Optional[float] = None) -> List[PunishmentRecord]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.active_punishments, user_id, now)

    async def can_send_messages_async(self, user_id: str, now: Optional[float] = None) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.can_send_messages, user_id, now)

    # ========================================================================
    # REVOCATION
    # ========================================================================

    def revoke(
        self,
        punishment_id: str,
        revoked_by: Optional[str] = None,
        now: Optional[float] = None
    ) -> PunishmentRecord:
        """Отозвать наказание.

        Для бана флаг в профиле пересчитывается в той же транзакции:
        он снимается, если у пользователя не осталось другого действующего бана.

        Raises:
            PersistenceError: наказание не найдено или запись не удалась
        """
        record = self.store.get_punishment_record(punishment_id)
        if record is None:
            raise PersistenceError(f"Наказание {punishment_id} не найдено")

        with self.locks.hold(record.user_id):
            banned = None
            if record.punishment_type == PunishmentType.BAN:
                banned = any(
                    p.punishment_type == PunishmentType.BAN and p.id != record.id
                    for p in self.active_punishments(record.user_id, now)
                )
            record = self.store.update_punishment_active(record.id, False, banned=banned)

        log.info(safe_log_action(
            f"revoke_{record.punishment_type.value}",
            record.user_id,
            admin_id=revoked_by,
            reason=f"punishment={record.id}",
        ))
        return record

    async def revoke_async(
        self,
        punishment_id: str,
        revoked_by: Optional[str] = None,
        now: Optional[float] = None
    ) -> PunishmentRecord:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.revoke, punishment_id, revoked_by, now)

    # ========================================================================
    # BAN FLAG
    # ========================================================================

    def check_ban_consistency(self, user_id: str, now: Optional[float] = None) -> None:
        """Проверить, что флаг бана совпадает с наличием действующего бана.

        Raises:
            ConsistencyError: если флаг и записи расходятся
        """
        flag = self.store.is_user_banned(user_id)
        active = self.has_active_ban(user_id, now)
        if flag != active:
            raise ConsistencyError(
                f"Флаг бана {pseudonymize_id(user_id)} = {flag}, действующий бан = {active}"
            )

    def reconcile_ban_flag(self, user_id: str, now: Optional[float] = None) -> bool:
        """Снять флаг бана, если бан истёк по времени.

        Returns:
            Актуальное значение флага
        """
        with self.locks.hold(user_id):
            flag = self.store.is_user_banned(user_id)
            active = self.has_active_ban(user_id, now)
            if flag != active:
                self.store.set_user_banned(user_id, active)
                log.info(f"Ban flag reconciled: user={pseudonymize_id(user_id)}, banned={active}")
            return active

    # ========================================================================
    # HISTORY
    # ========================================================================

    def punishment_history(
        self,
        user_id: str,
        status: str = STATUS_ALL,
        punishment_type: Optional[PunishmentType] = None,
        now: Optional[float] = None
    ) -> List[PunishmentRecord]:
        """Наказания пользователя, новые первые.

        Args:
            user_id: ID пользователя
            status: all / active / expired (истёкшие и отозванные)
            punishment_type: Фильтр по типу
            now: Текущее время
        """
        if status not in (STATUS_ALL, STATUS_ACTIVE, STATUS_EXPIRED):
            raise ValueError(f"status должен быть all/active/expired, получено: {status}")

        records = self.store.query_punishments(user_id)
        if punishment_type is not None:
            records = [p for p in records if p.punishment_type == PunishmentType(punishment_type)]
        if status == STATUS_ACTIVE:
            records = [p for p in records if p.is_enforced(now)]
        elif status == STATUS_EXPIRED:
            records = [p for p in records if not p.is_enforced(now)]
        return records

    # ========================================================================
    # WARNINGS
    # ========================================================================

    def unacknowledged_warnings(self, user_id: str) -> List[WarningRecord]:
        return [w for w in self.store.query_warnings(user_id) if not w.acknowledged]

    def acknowledge_warning(self, user_id: str, warning_id: str, now: Optional[float] = None) -> bool:
        """Подтвердить одно предупреждение. False если не найдено или уже подтверждено."""
        return self.store.acknowledge_warnings(user_id, [warning_id], now) > 0

    def acknowledge_all_warnings(self, user_id: str, now: Optional[float] = None) -> int:
        count = self.store.acknowledge_warnings(user_id, None, now)
        if count:
            log.info(f"Acknowledged {count} warnings for {pseudonymize_id(user_id)}")
        return count


def format_time_remaining(record: PunishmentRecord, now: Optional[float] = None) -> str:
    """Оставшееся время наказания для отображения пользователю."""
    if record.expires_at is None:
        return "Permanent"
    if now is None:
        now = time.time()
    remaining = int(record.expires_at - now)
    if remaining <= 0:
        return "Expired"

    hours, rest = divmod(remaining, 3600)
    minutes = rest // 60
    if hours:
        return f"Expires in {hours}h {minutes}m"
    if minutes:
        return f"Expires in {minutes}m"
    return "Expires in less than a minute"
