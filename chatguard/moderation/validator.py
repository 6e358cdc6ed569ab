# Copyright (c) 2025 sprowii
"""Проверка исходящего сообщения перед отправкой.

Валидатор только советует: он ничего не пишет в хранилище.
Сохранением нарушений занимается ViolationRecorder.
"""
import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional

from chatguard import config
from chatguard.logging_config import log
from chatguard.moderation.detectors import DetectorSet
from chatguard.moderation.errors import PersistenceError
from chatguard.moderation.models import Message, ViolationFinding
from chatguard.moderation.storage import RedisModerationStore
from chatguard.security.data_protection import pseudonymize_id


@dataclass
class ValidationResult:
    """Результат проверки сообщения.

    Attributes:
        is_valid: Нарушений нет
        violations: Находки детекторов в фиксированном порядке
        should_block: Сообщение нужно заблокировать
        should_warn: Сообщение можно отправить с предупреждением
    """
    is_valid: bool
    violations: List[ViolationFinding] = field(default_factory=list)
    should_block: bool = False
    should_warn: bool = False

    @property
    def max_severity(self) -> int:
        return max((v.severity for v in self.violations), default=0)


def classify(violations: List[ViolationFinding]) -> ValidationResult:
    """Решение allow / warn / block по списку находок."""
    max_severity = max((v.severity for v in violations), default=0)
    should_block = max_severity >= 1 or len(violations) >= 3
    should_warn = max_severity >= 2 and not should_block
    return ValidationResult(
        is_valid=len(violations) == 0,
        violations=list(violations),
        should_block=should_block,
        should_warn=should_warn,
    )


class MessageValidator:
    """Запускает детекторы над сообщением и недавней историей отправителя."""

    def __init__(
        self,
        store: RedisModerationStore,
        detectors: Optional[DetectorSet] = None,
        history_window_sec: int = config.MODERATION_HISTORY_WINDOW_SEC,
        history_limit: int = config.MODERATION_HISTORY_LIMIT
    ):
        self.store = store
        self.detectors = detectors or DetectorSet()
        self.history_window_sec = history_window_sec
        self.history_limit = history_limit

    def _load_history(self, user_id: str, room_id: str, now: float) -> List[Message]:
        """Последние сообщения пользователя в комнате.

        Без истории поведенческие детекторы просто ничего не находят.
        """
        try:
            return self.store.query_recent_messages(
                user_id,
                room_id,
                since=now - self.history_window_sec,
                limit=self.history_limit,
            )
        except PersistenceError as exc:
            log.warning(f"История сообщений недоступна для {pseudonymize_id(user_id)}: {exc}")
            return []

    def validate(
        self,
        content: str,
        user_id: str,
        room_id: str,
        timestamp: Optional[float] = None
    ) -> ValidationResult:
        """Проверить сообщение.

        Args:
            content: Текст сообщения (пустая строка тоже допустима)
            user_id: ID отправителя
            room_id: ID комнаты
            timestamp: Текущее время (по умолчанию time.time())

        Returns:
            ValidationResult
        """
        if timestamp is None:
            timestamp = time.time()

        history = self._load_history(user_id, room_id, timestamp)
        violations = self.detectors.detect(content, history, timestamp)
        result = classify(violations)

        if violations:
            log.info(
                f"Message validated: user={pseudonymize_id(user_id)}, "
                f"violations={[v.type.value for v in violations]}, "
                f"block={result.should_block}, warn={result.should_warn}"
            )
        return result

    async def validate_async(
        self,
        content: str,
        user_id: str,
        room_id: str,
        timestamp: Optional[float] = None
    ) -> ValidationResult:
        """Асинхронно проверить сообщение."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.validate, content, user_id, room_id, timestamp)


# ============================================================================
# USER-FACING MESSAGES
# ============================================================================

SEVERITY_LABELS = {
    1: "Low",
    2: "Medium",
    3: "High",
    4: "Critical",
    5: "Severe",
}


def get_severity_label(severity: int) -> str:
    return SEVERITY_LABELS.get(severity, "Unknown")


def format_violation_alert(result: ValidationResult) -> Optional[str]:
    """Текст предупреждения для автора сообщения.

    Returns:
        Текст или None, если нарушений нет
    """
    if result.is_valid:
        return None

    if result.should_block:
        lines = ["Message Blocked", "Your message was blocked due to policy violations:"]
    else:
        lines = ["Content Warning", "Your message contains content that may violate our guidelines:"]

    for violation in result.violations:
        title = violation.type.value.replace("_", " ").capitalize()
        lines.append(f"- {title}: {violation.description}")

    if result.should_block:
        lines.append("Please review our community guidelines and try again.")
    else:
        lines.append("Your message was sent, but please be mindful of our community standards.")

    return "\n".join(lines)
