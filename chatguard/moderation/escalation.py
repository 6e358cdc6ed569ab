# Copyright (c) 2025 sprouee
"""Эскалация нарушений в наказания.

Пороги (по умолчанию, см. EscalationPolicy), первое совпадение побеждает:
- 5+ нарушений за 24 часа или суммарная тяжесть пачки 10+ - бан на 1440 минут
- 3+ нарушений за 24 часа или суммарная тяжесть пачки 6+ - мут на 60 минут
- суммарная тяжесть пачки 3+ - предупреждение
- иначе наказания нет

Количество нарушений считается по всей истории за окно, а тяжесть -
только по текущей пачке.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from chatguard import config
from chatguard.logging_config import log
from chatguard.moderation.errors import PersistenceError
from chatguard.moderation.locks import UserLocks
from chatguard.moderation.models import (
    EscalationPolicy,
    PunishmentRecord,
    PunishmentType,
    ViolationFinding,
    ViolationRecord,
    WarningRecord,
)
from chatguard.moderation.recorder import ViolationRecorder
from chatguard.moderation.storage import RedisModerationStore
from chatguard.security.data_protection import pseudonymize_id, safe_log_action


@dataclass
class EscalationResult:
    """Результат обработки пачки нарушений.

    Attributes:
        punishment_type: Выданное наказание (None - без наказания)
        duration_minutes: Длительность мута/бана
        total_severity: Сумма тяжести текущей пачки
        recent_violation_count: Нарушений пользователя за окно эскалации, включая пачку
        violations: Сохранённые записи нарушений
        punishment: Созданное наказание (мут/бан)
        warning: Созданное предупреждение
        applied: Решение записано в хранилище
    """
    punishment_type: Optional[PunishmentType] = None
    duration_minutes: Optional[int] = None
    total_severity: int = 0
    recent_violation_count: int = 0
    violations: List[ViolationRecord] = field(default_factory=list)
    punishment: Optional[PunishmentRecord] = None
    warning: Optional[WarningRecord] = None
    applied: bool = False


def _describe(violations: List[ViolationFinding]) -> str:
    return ", ".join(v.description for v in violations)


class EscalationEngine:
    """Решает, какое наказание выдать, и записывает его."""

    def __init__(
        self,
        store: RedisModerationStore,
        recorder: Optional[ViolationRecorder] = None,
        policy: Optional[EscalationPolicy] = None,
        locks: Optional[UserLocks] = None,
        window_sec: int = config.MODERATION_ESCALATION_WINDOW_SEC
    ):
        self.store = store
        self.recorder = recorder or ViolationRecorder(store)
        self.policy = policy or EscalationPolicy.from_config()
        self.locks = locks or UserLocks(store.client)
        self.window_sec = window_sec

        errors = self.policy.validate()
        if errors:
            raise ValueError(f"Ошибки политики эскалации: {'; '.join(errors)}")

    def determine_punishment(
        self,
        recent_violation_count: int,
        total_severity: int
    ) -> Tuple[Optional[PunishmentType], Optional[int]]:
        """Определить наказание по порогам политики.

        Returns:
            Tuple (тип наказания, длительность в минутах)
        """
        policy = self.policy

        # Бан имеет приоритет над мутом
        if (recent_violation_count >= policy.ban_violation_count
                or total_severity >= policy.ban_severity):
            return PunishmentType.BAN, policy.ban_duration_minutes

        if (recent_violation_count >= policy.mute_violation_count
                or total_severity >= policy.mute_severity):
            return PunishmentType.MUTE, policy.mute_duration_minutes

        if total_severity >= policy.warning_severity:
            return PunishmentType.WARNING, None

        return None, None

    def _count_recent(self, user_id: str, inserted: List[ViolationRecord], now: float) -> int:
        try:
            history = self.store.query_violation_records(user_id, since=now - self.window_sec)
        except PersistenceError as exc:
            # Пачка уже сохранена, поэтому хотя бы её учитываем
            log.error(f"Не удалось прочитать историю нарушений {pseudonymize_id(user_id)}: {exc}")
            return len(inserted)
        return len(history)

    def _apply(
        self,
        user_id: str,
        result: EscalationResult,
        violations: List[ViolationFinding],
        now: float
    ) -> None:
        """Записать решение: предупреждение или наказание с флагом бана."""
        if result.punishment_type == PunishmentType.WARNING:
            warning = WarningRecord.create(
                user_id=user_id,
                message=f"You have violated community guidelines: {_describe(violations)}",
                issued_by=None,
                created_at=now,
            )
            self.store.insert_warning_record(warning)
            result.warning = warning
        else:
            punishment = PunishmentRecord.create(
                user_id=user_id,
                punishment_type=result.punishment_type,
                reason=f"Automated punishment for violations: {_describe(violations)}",
                duration_minutes=result.duration_minutes,
                violation_id=result.violations[0].id if result.violations else None,
                issued_by=None,
                created_at=now,
            )
            self.store.insert_punishment_record(
                punishment,
                set_banned=result.punishment_type == PunishmentType.BAN,
            )
            result.punishment = punishment

        result.applied = True
        log.info(safe_log_action(
            result.punishment_type.value,
            user_id,
            reason=f"auto: count={result.recent_violation_count}, severity={result.total_severity}",
        ))

    def process_violation(
        self,
        user_id: str,
        violations: List[ViolationFinding],
        message_id: Optional[str] = None,
        timestamp: Optional[float] = None
    ) -> EscalationResult:
        """Сохранить нарушения и при необходимости выдать наказание.

        Ошибка сохранения нарушений или блокировки пользователя прерывает
        эскалацию (возвращается нулевой результат). Ошибка записи наказания только логируется:
        вычисленное решение всё равно возвращается.

        Args:
            user_id: ID нарушителя
            violations: Находки валидатора
            message_id: ID отправленного сообщения (None для заблокированных)
            timestamp: Текущее время

        Returns:
            EscalationResult
        """
        if not violations:
            return EscalationResult()

        if timestamp is None:
            timestamp = time.time()

        try:
            with self.locks.hold(user_id):
                return self._process_locked(user_id, violations, message_id, timestamp)
        except PersistenceError as exc:
            log.error(f"Escalation aborted for {pseudonymize_id(user_id)}: {exc}")
            return EscalationResult()

    def _process_locked(
        self,
        user_id: str,
        violations: List[ViolationFinding],
        message_id: Optional[str],
        timestamp: float
    ) -> EscalationResult:
        """Запись, подсчёт и применение под блокировкой пользователя.

        Raises:
            PersistenceError: если нарушения не сохранены
        """
        inserted = self.recorder.record(user_id, violations, message_id, timestamp)

        result = EscalationResult(
            total_severity=sum(v.severity for v in violations),
            recent_violation_count=self._count_recent(user_id, inserted, timestamp),
            violations=inserted,
        )
        result.punishment_type, result.duration_minutes = self.determine_punishment(
            result.recent_violation_count,
            result.total_severity,
        )

        log.info(
            f"Escalation: user={pseudonymize_id(user_id)}, recent={result.recent_violation_count}, "
            f"severity={result.total_severity}, "
            f"punishment={result.punishment_type.value if result.punishment_type else 'none'}"
        )

        if result.punishment_type is not None:
            try:
                self._apply(user_id, result, violations, timestamp)
            except PersistenceError as exc:
                log.error(
                    f"Не удалось применить {result.punishment_type.value} "
                    f"для {pseudonymize_id(user_id)}: {exc}"
                )

        return result

    async def process_violation_async(
        self,
        user_id: str,
        violations: List[ViolationFinding],
        message_id: Optional[str] = None,
        timestamp: Optional[float] = None
    ) -> EscalationResult:
        """Асинхронно обработать нарушения."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.process_violation, user_id, violations, message_id, timestamp
        )
