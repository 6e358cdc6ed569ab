# Copyright (c) 2025 sprowii
"""Модуль модерации чата.

Компоненты:
- ModerationController: Центральная точка входа для всех операций модерации
- DetectorSet: Детекторы нарушений
- MessageValidator: Проверка сообщения перед отправкой
- ViolationRecorder: Сохранение нарушений
- EscalationEngine: Эскалация нарушений в наказания
- PunishmentStore: Действующие наказания, отзыв и предупреждения
- ActivityLogger: Журнал активности
"""

from chatguard.moderation.activity import ActivityLogger, format_activity_details, read_appeal_text
from chatguard.moderation.controller import (
    ModerationController,
    SendOutcome,
    SendStatus,
    get_moderation_controller,
    init_moderation_controller,
)
from chatguard.moderation.detectors import DetectorSet
from chatguard.moderation.errors import (
    ConsistencyError,
    InvalidInputError,
    ModerationError,
    PersistenceError,
)
from chatguard.moderation.escalation import EscalationEngine, EscalationResult
from chatguard.moderation.models import (
    ActivityAction,
    ActivityLogEntry,
    EscalationPolicy,
    Message,
    PunishmentRecord,
    PunishmentType,
    ViolationFinding,
    ViolationRecord,
    ViolationType,
    WarningRecord,
)
from chatguard.moderation.punishments import PunishmentStore, format_time_remaining
from chatguard.moderation.recorder import ViolationRecorder
from chatguard.moderation.storage import RedisModerationStore
from chatguard.moderation.validator import (
    MessageValidator,
    ValidationResult,
    format_violation_alert,
    get_severity_label,
)

__all__ = [
    # Controller
    "ModerationController",
    "SendOutcome",
    "SendStatus",
    "get_moderation_controller",
    "init_moderation_controller",
    # Errors
    "ModerationError",
    "PersistenceError",
    "InvalidInputError",
    "ConsistencyError",
    # Models
    "ActivityAction",
    "ActivityLogEntry",
    "EscalationPolicy",
    "Message",
    "PunishmentRecord",
    "PunishmentType",
    "ViolationFinding",
    "ViolationRecord",
    "ViolationType",
    "WarningRecord",
    # Pipeline
    "DetectorSet",
    "MessageValidator",
    "ValidationResult",
    "ViolationRecorder",
    "EscalationEngine",
    "EscalationResult",
    "PunishmentStore",
    "RedisModerationStore",
    # Activity
    "ActivityLogger",
    "format_activity_details",
    "read_appeal_text",
    # Formatting
    "format_violation_alert",
    "format_time_remaining",
    "get_severity_label",
]
