# Copyright (c) 2025 sprouee
"""Журнал активности пользователей.

Записи журнала нужны для наблюдаемости и разбора апелляций админами.
Ошибка записи журнала не должна ломать вызывающий код, поэтому
log_activity только логирует её. Исключение - апелляции: пользователь
должен узнать, что апелляция не отправлена.
"""
import dataclasses
import time
from typing import List, Optional

from chatguard.logging_config import log
from chatguard.moderation.errors import PersistenceError
from chatguard.moderation.models import (
    ActivityAction,
    ActivityDetails,
    ActivityLogEntry,
    MessageSentDetails,
    PunishmentAppealDetails,
    PunishmentRecord,
    SessionDetails,
    ViolationDetectedDetails,
    ViolationRecord,
)
from chatguard.moderation.storage import RedisModerationStore
from chatguard.security.data_protection import decrypt_text, encrypt_text, pseudonymize_id


class ActivityLogger:
    """Запись и чтение журнала активности."""

    def __init__(self, store: RedisModerationStore):
        self.store = store

    def log_activity(
        self,
        user_id: str,
        action: ActivityAction,
        details: ActivityDetails,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        timestamp: Optional[float] = None
    ) -> Optional[ActivityLogEntry]:
        """Записать действие в журнал.

        Raises:
            InvalidInputError: если details не соответствует action

        Returns:
            Созданная запись или None, если запись в хранилище не удалась
        """
        entry = ActivityLogEntry.create(
            user_id=user_id,
            action=action,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=timestamp,
        )
        try:
            self.store.append_activity_log(entry)
        except PersistenceError as exc:
            log.error(f"Failed to log activity {entry.action.value} for {pseudonymize_id(user_id)}: {exc}")
            return None
        return entry

    def log_session(
        self,
        user_id: str,
        action: ActivityAction,
        timestamp: Optional[float] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Optional[ActivityLogEntry]:
        """Записать вход (LOGIN) или выход (LOGOUT) пользователя."""
        if timestamp is None:
            timestamp = time.time()
        return self.log_activity(
            user_id,
            action,
            SessionDetails(timestamp=timestamp),
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=timestamp,
        )

    def log_message_sent(
        self,
        user_id: str,
        room_id: str,
        room_name: str,
        message_length: int,
        has_violations: bool,
        timestamp: Optional[float] = None
    ) -> Optional[ActivityLogEntry]:
        details = MessageSentDetails(
            room_id=room_id,
            room_name=room_name,
            message_length=message_length,
            has_violations=has_violations,
        )
        return self.log_activity(user_id, ActivityAction.MESSAGE_SENT, details, timestamp=timestamp)

    def log_violation(
        self,
        user_id: str,
        worst: ViolationRecord,
        violation_count: int = 1,
        timestamp: Optional[float] = None
    ) -> Optional[ActivityLogEntry]:
        """Сводка по пачке нарушений: самое тяжёлое и общее количество."""
        details = ViolationDetectedDetails(
            violation_id=worst.id,
            violation_type=worst.violation_type.value,
            severity=worst.severity,
            violation_count=violation_count,
        )
        return self.log_activity(user_id, ActivityAction.VIOLATION_DETECTED, details, timestamp=timestamp)

    def log_appeal(
        self,
        user_id: str,
        punishment: PunishmentRecord,
        appeal_text: str,
        timestamp: Optional[float] = None
    ) -> ActivityLogEntry:
        """Записать апелляцию на наказание.

        Текст проверяется до шифрования и хранится зашифрованным,
        если настроен DATA_ENCRYPTION_KEY.

        Raises:
            InvalidInputError: пустой или слишком длинный текст
            PersistenceError: апелляция не сохранена
        """
        details = PunishmentAppealDetails(
            punishment_id=punishment.id,
            punishment_type=punishment.punishment_type.value,
            appeal_text=appeal_text,
        )
        details = dataclasses.replace(details, appeal_text=encrypt_text(appeal_text))
        entry = ActivityLogEntry.create(
            user_id=user_id,
            action=ActivityAction.PUNISHMENT_APPEAL,
            details=details,
            created_at=timestamp,
        )
        self.store.append_activity_log(entry)
        log.info(
            f"Appeal submitted: user={pseudonymize_id(user_id)}, "
            f"punishment={punishment.id}, type={punishment.punishment_type.value}"
        )
        return entry

    def load(
        self,
        limit: int = 20,
        user_id: Optional[str] = None,
        action: Optional[ActivityAction] = None
    ) -> List[ActivityLogEntry]:
        return self.store.load_activity_log(limit=limit, user_id=user_id, action=action)


def read_appeal_text(entry: ActivityLogEntry) -> Optional[str]:
    """Расшифрованный текст апелляции или None для других действий."""
    if not isinstance(entry.details, PunishmentAppealDetails):
        return None
    return decrypt_text(entry.details.appeal_text)


def format_activity_details(entry: ActivityLogEntry) -> Optional[str]:
    """Краткое описание записи для панели админа."""
    details = entry.details
    if isinstance(details, MessageSentDetails):
        return f"Room: {details.room_name or 'Unknown'} ({details.message_length} chars)"
    if isinstance(details, ViolationDetectedDetails):
        return f"Type: {details.violation_type} (Severity: {details.severity})"
    if isinstance(details, PunishmentAppealDetails):
        return f"{details.punishment_type} appeal"
    return None
