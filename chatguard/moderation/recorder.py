# Copyright (c) 2025 sprowii
"""Сохранение найденных нарушений."""
from typing import List, Optional

from chatguard.logging_config import log
from chatguard.moderation.activity import ActivityLogger
from chatguard.moderation.models import SYSTEM_DETECTOR, ViolationFinding, ViolationRecord
from chatguard.moderation.storage import RedisModerationStore
from chatguard.security.data_protection import pseudonymize_id


class ViolationRecorder:
    """Превращает находки детекторов в записи нарушений.

    На каждую находку - одна запись с detected_by="system", затем
    одна запись журнала активности о самом тяжёлом нарушении.
    """

    def __init__(self, store: RedisModerationStore, activity: Optional[ActivityLogger] = None):
        self.store = store
        self.activity = activity or ActivityLogger(store)

    def record(
        self,
        user_id: str,
        findings: List[ViolationFinding],
        message_id: Optional[str] = None,
        timestamp: Optional[float] = None
    ) -> List[ViolationRecord]:
        """Сохранить нарушения.

        Args:
            user_id: ID нарушителя
            findings: Находки детекторов
            message_id: ID отправленного сообщения (None для заблокированных)
            timestamp: Время обнаружения

        Returns:
            Сохранённые записи в порядке находок

        Raises:
            PersistenceError: если запись в хранилище не удалась
        """
        if not findings:
            return []

        records = [
            ViolationRecord.create(
                user_id=user_id,
                finding=finding,
                message_id=message_id,
                detected_by=SYSTEM_DETECTOR,
                created_at=timestamp,
            )
            for finding in findings
        ]
        inserted = self.store.insert_violation_records(records)

        worst = max(inserted, key=lambda r: r.severity)
        self.activity.log_violation(user_id, worst, violation_count=len(inserted), timestamp=timestamp)

        log.info(
            f"Violations recorded: user={pseudonymize_id(user_id)}, count={len(inserted)}, "
            f"worst={worst.violation_type.value}/{worst.severity}"
        )
        return inserted
