# Copyright (c) 2025 sprowii
import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from chatguard.logging_config import log
from chatguard.moderation.activity import ActivityLogger
from chatguard.moderation.detectors import DetectorSet
from chatguard.moderation.errors import InvalidInputError, PersistenceError
from chatguard.moderation.escalation import EscalationEngine, EscalationResult
from chatguard.moderation.locks import UserLocks
from chatguard.moderation.models import (
    ActivityAction,
    ActivityLogEntry,
    EscalationPolicy,
    Message,
    PunishmentRecord,
    ViolationFinding,
    WarningRecord,
)
from chatguard.moderation.punishments import PunishmentStore
from chatguard.moderation.recorder import ViolationRecorder
from chatguard.moderation.storage import RedisModerationStore
from chatguard.moderation.validator import MessageValidator, ValidationResult, format_violation_alert
from chatguard.security.data_protection import pseudonymize_id


class SendStatus(str, Enum):
    """Итог попытки отправить сообщение."""
    SENT = "sent"
    SENT_WITH_WARNING = "sent_with_warning"
    BLOCKED = "blocked"              # Нарушения, сообщение не сохранено
    REJECTED_BANNED = "rejected_banned"
    REJECTED_MUTED = "rejected_muted"
    FAILED = "failed"                # Слой сообщений не сохранил сообщение


@dataclass
class SendOutcome:
    """Результат обработки исходящего сообщения."""
    status: SendStatus
    validation: Optional[ValidationResult] = None
    escalation: Optional[EscalationResult] = None
    message: Optional[Message] = None
    alert: Optional[str] = None

    @property
    def sent(self) -> bool:
        return self.status in (SendStatus.SENT, SendStatus.SENT_WITH_WARNING)


class ModerationController:
    """Центральный контроллер модерации.

    Объединяет валидатор, запись нарушений, эскалацию и наказания
    и предоставляет единую точку входа для слоя сообщений.
    """

    def __init__(
        self,
        store: Optional[RedisModerationStore] = None,
        policy: Optional[EscalationPolicy] = None,
        detectors: Optional[DetectorSet] = None
    ):
        """
        Args:
            store: Хранилище модерации (по умолчанию Redis из REDIS_URL)
            policy: Пороги эскалации (по умолчанию из переменных окружения)
            detectors: Набор детекторов
        """
        self.store = store or RedisModerationStore()
        self.locks = UserLocks(self.store.client)
        self.activity = ActivityLogger(self.store)
        self.validator = MessageValidator(self.store, detectors)
        self.recorder = ViolationRecorder(self.store, self.activity)
        self.engine = EscalationEngine(self.store, self.recorder, policy, self.locks)
        self.punishments = PunishmentStore(self.store, self.locks)

    # ========================================================================
    # PIPELINE
    # ========================================================================

    def validate_message(
        self,
        content: str,
        user_id: str,
        room_id: str,
        timestamp: Optional[float] = None
    ) -> ValidationResult:
        return self.validator.validate(content, user_id, room_id, timestamp)

    async def validate_message_async(
        self,
        content: str,
        user_id: str,
        room_id: str,
        timestamp: Optional[float] = None
    ) -> ValidationResult:
        return await self.validator.validate_async(content, user_id, room_id, timestamp)

    def process_violation(
        self,
        user_id: str,
        violations: List[ViolationFinding],
        message_id: Optional[str] = None,
        timestamp: Optional[float] = None
    ) -> EscalationResult:
        return self.engine.process_violation(user_id, violations, message_id, timestamp)

    async def process_violation_async(
        self,
        user_id: str,
        violations: List[ViolationFinding],
        message_id: Optional[str] = None,
        timestamp: Optional[float] = None
    ) -> EscalationResult:
        return await self.engine.process_violation_async(user_id, violations, message_id, timestamp)

    def can_send_messages(self, user_id: str, now: Optional[float] = None) -> bool:
        return self.punishments.can_send_messages(user_id, now)

    async def can_send_messages_async(self, user_id: str, now: Optional[float] = None) -> bool:
        return await self.punishments.can_send_messages_async(user_id, now)

    # ========================================================================
    # SEND FLOW
    # ========================================================================

    def _check_gate(self, user_id: str, now: float) -> Optional[SendStatus]:
        """Проверить бан и мут. None - отправлять можно.

        Если хранилище недоступно, сообщение пропускается.
        """
        try:
            if self.punishments.reconcile_ban_flag(user_id, now):
                return SendStatus.REJECTED_BANNED
            if not self.punishments.can_send_messages(user_id, now):
                return SendStatus.REJECTED_MUTED
        except PersistenceError as exc:
            log.error(f"Проверка наказаний недоступна для {pseudonymize_id(user_id)}: {exc}")
        return None

    def handle_outgoing_message(
        self,
        content: str,
        user_id: str,
        room_id: str,
        room_name: str = "",
        timestamp: Optional[float] = None
    ) -> SendOutcome:
        """Полная обработка исходящего сообщения.

        1. Забаненные и замученные пользователи не могут писать
        2. Сообщение проверяется детекторами
        3. Заблокированное сообщение не сохраняется, нарушения эскалируются без message_id
        4. Иначе сообщение сохраняется, пишется журнал, нарушения эскалируются с message_id

        Args:
            content: Текст сообщения
            user_id: ID отправителя
            room_id: ID комнаты
            room_name: Название комнаты для журнала
            timestamp: Время отправки

        Returns:
            SendOutcome
        """
        if timestamp is None:
            timestamp = time.time()

        rejected = self._check_gate(user_id, timestamp)
        if rejected is not None:
            return SendOutcome(status=rejected)

        validation = self.validate_message(content, user_id, room_id, timestamp)
        alert = format_violation_alert(validation)

        if not validation.is_valid and validation.should_block:
            escalation = self.process_violation(user_id, validation.violations, None, timestamp)
            return SendOutcome(
                status=SendStatus.BLOCKED,
                validation=validation,
                escalation=escalation,
                alert=alert,
            )

        message = Message.create(content, user_id, room_id, created_at=timestamp)
        try:
            self.store.save_message(message)
        except PersistenceError as exc:
            log.error(f"Error sending message for {pseudonymize_id(user_id)}: {exc}")
            return SendOutcome(status=SendStatus.FAILED, validation=validation, alert=alert)

        self.activity.log_message_sent(
            user_id,
            room_id=room_id,
            room_name=room_name,
            message_length=len(content),
            has_violations=not validation.is_valid,
            timestamp=timestamp,
        )

        escalation = None
        if not validation.is_valid:
            escalation = self.process_violation(user_id, validation.violations, message.id, timestamp)

        return SendOutcome(
            status=SendStatus.SENT_WITH_WARNING if validation.should_warn else SendStatus.SENT,
            validation=validation,
            escalation=escalation,
            message=message,
            alert=alert,
        )

    async def handle_outgoing_message_async(
        self,
        content: str,
        user_id: str,
        room_id: str,
        room_name: str = "",
        timestamp: Optional[float] = None
    ) -> SendOutcome:
        """Асинхронная обработка исходящего сообщения."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, self.handle_outgoing_message, content, user_id, room_id, room_name, timestamp
        )

    # ========================================================================
    # PUNISHMENTS
    # ========================================================================

    def active_punishments(self, user_id: str, now: Optional[float] = None) -> List[PunishmentRecord]:
        return self.punishments.active_punishments(user_id, now)

    def revoke_punishment(
        self,
        punishment_id: str,
        revoked_by: Optional[str] = None,
        now: Optional[float] = None
    ) -> PunishmentRecord:
        return self.punishments.revoke(punishment_id, revoked_by, now)

    def submit_appeal(
        self,
        user_id: str,
        punishment_id: str,
        appeal_text: str,
        timestamp: Optional[float] = None
    ) -> ActivityLogEntry:
        """Подать апелляцию на своё наказание.

        Raises:
            PersistenceError: наказание не найдено или апелляция не сохранена
            InvalidInputError: чужое наказание, пустой или слишком длинный текст
        """
        punishment = self.store.get_punishment_record(punishment_id)
        if punishment is None:
            raise PersistenceError(f"Наказание {punishment_id} не найдено")
        if punishment.user_id != user_id:
            raise InvalidInputError("Апелляцию можно подать только на своё наказание")
        return self.activity.log_appeal(user_id, punishment, appeal_text, timestamp)

    # ========================================================================
    # WARNINGS
    # ========================================================================

    def get_unacknowledged_warnings(self, user_id: str) -> List[WarningRecord]:
        return self.punishments.unacknowledged_warnings(user_id)

    def acknowledge_warning(self, user_id: str, warning_id: str, now: Optional[float] = None) -> bool:
        return self.punishments.acknowledge_warning(user_id, warning_id, now)

    def acknowledge_all_warnings(self, user_id: str, now: Optional[float] = None) -> int:
        return self.punishments.acknowledge_all_warnings(user_id, now)

    # ========================================================================
    # ACTIVITY LOG
    # ========================================================================

    def log_login(self, user_id: str, **kwargs) -> Optional[ActivityLogEntry]:
        return self.activity.log_session(user_id, ActivityAction.LOGIN, **kwargs)

    def log_logout(self, user_id: str, **kwargs) -> Optional[ActivityLogEntry]:
        return self.activity.log_session(user_id, ActivityAction.LOGOUT, **kwargs)

    def get_activity_log(
        self,
        limit: int = 20,
        user_id: Optional[str] = None,
        action: Optional[ActivityAction] = None
    ) -> List[ActivityLogEntry]:
        return self.activity.load(limit, user_id, action)


# Глобальный экземпляр контроллера (создаётся при старте слоя сообщений)
_controller: Optional[ModerationController] = None


def get_moderation_controller() -> ModerationController:
    """Получить или создать глобальный экземпляр контроллера модерации."""
    global _controller
    if _controller is None:
        _controller = ModerationController()
    return _controller


def init_moderation_controller(
    store: Optional[RedisModerationStore] = None,
    policy: Optional[EscalationPolicy] = None
) -> ModerationController:
    """Инициализировать глобальный контроллер модерации.

    Вызывается при старте приложения.
    """
    global _controller
    _controller = ModerationController(store, policy)
    log.info("ModerationController initialized")
    return _controller
