# Copyright (c) 2025 sprowii
"""Модели данных для конвейера модерации."""
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import time
import uuid

from chatguard import config
from chatguard.moderation.errors import InvalidInputError

# Значение detected_by для автоматически найденных нарушений
SYSTEM_DETECTOR = "system"

MIN_SEVERITY = 1
MAX_SEVERITY = 5


class ViolationType(str, Enum):
    """Класс нарушения, который находит детектор."""
    PROFANITY = "profanity"
    HARASSMENT = "harassment"
    SPAM = "spam"
    EXCESSIVE_LENGTH = "excessive_length"
    EMPTY_MESSAGE = "empty_message"
    REPEATED_MESSAGES = "repeated_messages"
    RAPID_POSTING = "rapid_posting"


class PunishmentType(str, Enum):
    """Тип наказания."""
    WARNING = "warning"  # Только подтверждение, без ограничений
    MUTE = "mute"
    BAN = "ban"


# Наказания, которые запрещают отправку сообщений
ENFORCING_PUNISHMENTS = frozenset({PunishmentType.MUTE, PunishmentType.BAN})


def _check_severity(severity: int) -> None:
    if isinstance(severity, bool) or not isinstance(severity, int):
        raise InvalidInputError(f"severity должен быть целым числом, получено: {severity!r}")
    if not (MIN_SEVERITY <= severity <= MAX_SEVERITY):
        raise InvalidInputError(
            f"severity должен быть от {MIN_SEVERITY} до {MAX_SEVERITY}, получено: {severity}"
        )


@dataclass
class Message:
    """Сообщение чата. Принадлежит слою сообщений, модерация его только читает."""
    id: str
    content: str
    user_id: str
    room_id: str
    created_at: float

    @classmethod
    def create(
        cls,
        content: str,
        user_id: str,
        room_id: str,
        created_at: Optional[float] = None
    ) -> "Message":
        """Создать сообщение с автоматическим ID и временем."""
        return cls(
            id=str(uuid.uuid4()),
            content=content,
            user_id=user_id,
            room_id=room_id,
            created_at=time.time() if created_at is None else created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(**data)


@dataclass
class ViolationFinding:
    """Результат одного детектора до сохранения в хранилище.

    confidence нужен только для аналитики и не влияет на эскалацию.
    """
    type: ViolationType
    description: str
    severity: int
    confidence: float = 1.0

    def __post_init__(self):
        self.type = ViolationType(self.type)
        _check_severity(self.severity)
        if not (0.0 <= self.confidence <= 1.0):
            raise InvalidInputError(f"confidence должен быть от 0 до 1, получено: {self.confidence}")


@dataclass
class ViolationRecord:
    """Сохранённое нарушение. Неизменяемо и никогда не удаляется."""
    id: str
    user_id: str
    violation_type: ViolationType
    description: str
    severity: int
    detected_by: str
    created_at: float
    message_id: Optional[str] = None

    def __post_init__(self):
        self.violation_type = ViolationType(self.violation_type)
        _check_severity(self.severity)

    @classmethod
    def create(
        cls,
        user_id: str,
        finding: ViolationFinding,
        message_id: Optional[str] = None,
        detected_by: str = SYSTEM_DETECTOR,
        created_at: Optional[float] = None
    ) -> "ViolationRecord":
        """Создать запись нарушения из находки детектора."""
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            violation_type=finding.type,
            description=finding.description,
            severity=finding.severity,
            detected_by=detected_by,
            created_at=time.time() if created_at is None else created_at,
            message_id=message_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["violation_type"] = self.violation_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ViolationRecord":
        return cls(**data)


@dataclass
class PunishmentRecord:
    """Наказание пользователя.

    Истечение проверяется при чтении (now > expires_at), фоновой задачи нет.
    Отзыв выставляет is_active = False.
    """
    id: str
    user_id: str
    punishment_type: PunishmentType
    reason: str
    created_at: float
    is_active: bool = True
    duration_minutes: Optional[int] = None
    expires_at: Optional[float] = None  # None = бессрочно
    violation_id: Optional[str] = None
    issued_by: Optional[str] = None  # None для автоматических наказаний

    def __post_init__(self):
        self.punishment_type = PunishmentType(self.punishment_type)

    @classmethod
    def create(
        cls,
        user_id: str,
        punishment_type: PunishmentType,
        reason: str,
        duration_minutes: Optional[int] = None,
        violation_id: Optional[str] = None,
        issued_by: Optional[str] = None,
        created_at: Optional[float] = None
    ) -> "PunishmentRecord":
        """Создать наказание; expires_at считается из длительности."""
        if created_at is None:
            created_at = time.time()
        expires_at = None
        if duration_minutes:
            expires_at = created_at + duration_minutes * 60
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            punishment_type=punishment_type,
            reason=reason,
            created_at=created_at,
            duration_minutes=duration_minutes,
            expires_at=expires_at,
            violation_id=violation_id,
            issued_by=issued_by,
        )

    @property
    def is_enforcing(self) -> bool:
        """Запрещает ли этот тип наказания отправку сообщений."""
        return self.punishment_type in ENFORCING_PUNISHMENTS

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        if now is None:
            now = time.time()
        return now >= self.expires_at

    def is_enforced(self, now: Optional[float] = None) -> bool:
        """Действует ли наказание: активно и не истекло."""
        return self.is_active and not self.is_expired(now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["punishment_type"] = self.punishment_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PunishmentRecord":
        return cls(**data)


@dataclass
class WarningRecord:
    """Предупреждение. Требует подтверждения пользователем, но ничего не запрещает."""
    id: str
    user_id: str
    message: str
    created_at: float
    issued_by: Optional[str] = None
    acknowledged: bool = False
    acknowledged_at: Optional[float] = None

    @classmethod
    def create(
        cls,
        user_id: str,
        message: str,
        issued_by: Optional[str] = None,
        created_at: Optional[float] = None
    ) -> "WarningRecord":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            message=message,
            created_at=time.time() if created_at is None else created_at,
            issued_by=issued_by,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WarningRecord":
        return cls(**data)


@dataclass
class EscalationPolicy:
    """Пороги эскалации нарушений в наказания."""
    ban_violation_count: int = 5
    ban_severity: int = 10
    mute_violation_count: int = 3
    mute_severity: int = 6
    warning_severity: int = 3
    mute_duration_minutes: int = 60
    ban_duration_minutes: int = 1440

    @classmethod
    def from_config(cls) -> "EscalationPolicy":
        """Политика из переменных окружения (см. config)."""
        return cls(
            ban_violation_count=config.MOD_BAN_VIOLATION_COUNT,
            ban_severity=config.MOD_BAN_SEVERITY,
            mute_violation_count=config.MOD_MUTE_VIOLATION_COUNT,
            mute_severity=config.MOD_MUTE_SEVERITY,
            warning_severity=config.MOD_WARNING_SEVERITY,
            mute_duration_minutes=config.MOD_MUTE_DURATION_MIN,
            ban_duration_minutes=config.MOD_BAN_DURATION_MIN,
        )

    def validate(self) -> List[str]:
        """Валидация порогов. Возвращает список ошибок."""
        errors = []

        for name in (
            "ban_violation_count",
            "ban_severity",
            "mute_violation_count",
            "mute_severity",
            "warning_severity",
            "mute_duration_minutes",
            "ban_duration_minutes",
        ):
            value = getattr(self, name)
            if value < 1:
                errors.append(f"{name} должен быть положительным, получено: {value}")

        if self.mute_violation_count > self.ban_violation_count:
            errors.append("mute_violation_count не должен превышать ban_violation_count")
        if self.mute_severity > self.ban_severity:
            errors.append("mute_severity не должен превышать ban_severity")
        if self.warning_severity > self.mute_severity:
            errors.append("warning_severity не должен превышать mute_severity")

        return errors


# ============================================================================
# ACTIVITY LOG
# ============================================================================

class ActivityAction(str, Enum):
    """Тип записи журнала активности."""
    LOGIN = "login"
    LOGOUT = "logout"
    MESSAGE_SENT = "message_sent"
    VIOLATION_DETECTED = "violation_detected"
    PUNISHMENT_APPEAL = "punishment_appeal"


@dataclass
class SessionDetails:
    """Вход или выход пользователя."""
    timestamp: float


@dataclass
class MessageSentDetails:
    room_id: str
    room_name: str
    message_length: int
    has_violations: bool

    def __post_init__(self):
        if self.message_length < 0:
            raise InvalidInputError(f"message_length не может быть отрицательным: {self.message_length}")


@dataclass
class ViolationDetectedDetails:
    """Сводка по самому тяжёлому нарушению пачки."""
    violation_id: str
    violation_type: str
    severity: int
    violation_count: int = 1

    def __post_init__(self):
        _check_severity(self.severity)
        if self.violation_count < 1:
            raise InvalidInputError(f"violation_count должен быть положительным: {self.violation_count}")


@dataclass
class PunishmentAppealDetails:
    punishment_id: str
    punishment_type: str
    appeal_text: str

    def __post_init__(self):
        if not self.appeal_text or not self.appeal_text.strip():
            raise InvalidInputError("Текст апелляции не может быть пустым")
        if len(self.appeal_text) > config.MAX_APPEAL_LENGTH and not self.appeal_text.startswith("enc:"):
            raise InvalidInputError(
                f"Текст апелляции длиннее {config.MAX_APPEAL_LENGTH} символов: {len(self.appeal_text)}"
            )


ActivityDetails = Union[
    SessionDetails,
    MessageSentDetails,
    ViolationDetectedDetails,
    PunishmentAppealDetails,
]

ACTIVITY_DETAILS_TYPES = {
    ActivityAction.LOGIN: SessionDetails,
    ActivityAction.LOGOUT: SessionDetails,
    ActivityAction.MESSAGE_SENT: MessageSentDetails,
    ActivityAction.VIOLATION_DETECTED: ViolationDetectedDetails,
    ActivityAction.PUNISHMENT_APPEAL: PunishmentAppealDetails,
}


@dataclass
class ActivityLogEntry:
    """Запись журнала активности.

    Тип details определяется action и проверяется при создании.
    """
    id: str
    user_id: str
    action: ActivityAction
    details: ActivityDetails
    created_at: float
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def __post_init__(self):
        self.action = ActivityAction(self.action)
        expected = ACTIVITY_DETAILS_TYPES[self.action]
        if not isinstance(self.details, expected):
            raise InvalidInputError(
                f"Для действия {self.action.value} ожидается {expected.__name__}, "
                f"получено: {type(self.details).__name__}"
            )

    @classmethod
    def create(
        cls,
        user_id: str,
        action: ActivityAction,
        details: ActivityDetails,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        created_at: Optional[float] = None
    ) -> "ActivityLogEntry":
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            action=action,
            details=details,
            created_at=time.time() if created_at is None else created_at,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["action"] = self.action.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActivityLogEntry":
        data = dict(data)
        action = ActivityAction(data["action"])
        data["action"] = action
        data["details"] = ACTIVITY_DETAILS_TYPES[action](**data["details"])
        return cls(**data)
