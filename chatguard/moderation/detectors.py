# Copyright (c) 2025 sprowii
"""Детекторы нарушений.

Каждый детектор - чистая функция над текстом сообщения (и, для
поведенческих проверок, над недавней историей пользователя в комнате).
Детекторы не меняют состояние и не бросают исключений: в худшем
случае они ничего не находят.
"""
import re
import time
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from chatguard import config
from chatguard.logging_config import log
from chatguard.moderation.models import Message, ViolationFinding, ViolationType

# ============================================================================
# PATTERNS
# ============================================================================

# Список запрещённых слов (поиск подстроки без учёта регистра)
PROFANITY_WORDS = [
    "damn",
    "hell",
    "crap",
    "stupid",
    "idiot",
    "moron",
    "dumb",
    "loser",
    "bobo",
    "bobo ka",
    "8080",
    "tanginamo",
    "putanginamo",
    "3030",
    "tanga",
    "panget",
    "mongoloid",
    "9090",
]

# Угрозы и оскорбления
HARASSMENT_PATTERNS = [
    r"kill\s+yourself",
    r"go\s+die",
    r"you\s+suck",
    r"hate\s+you",
    r"shut\s+up",
    r"get\s+lost",
]

# Признаки спама
REPEATED_CHARS_REGEX = re.compile(r"(.)\1{4,}")    # "aaaaa"
ALL_CAPS_REGEX = re.compile(r"[A-Z\s!]{10,}")     # всё сообщение капсом
URL_REGEX = re.compile(r"https?://[^\s]+")

SPAM_REPEATED_CHARS_SCORE = 2
SPAM_ALL_CAPS_SCORE = 1
SPAM_URL_SCORE = 3
SPAM_TRIGGER_SCORE = 3

REPEATED_MESSAGES_THRESHOLD = 3
RAPID_POSTING_THRESHOLD = 5
RAPID_POSTING_WINDOW_SEC = 60


def _as_text(content) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return str(content)


def compile_harassment_patterns(patterns: Iterable[str]) -> List[Pattern]:
    """Скомпилировать паттерны, пропуская некорректные."""
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as exc:
            log.warning(f"Некорректный паттерн харассмента '{pattern}': {exc}")
    return compiled


# ============================================================================
# CONTENT DETECTORS
# ============================================================================

def detect_profanity(content: str, words: Sequence[str] = PROFANITY_WORDS) -> List[ViolationFinding]:
    """Ищет запрещённые слова. Каждое слово считается один раз."""
    lower_content = _as_text(content).lower()
    found = [word for word in words if word and word.lower() in lower_content]
    if not found:
        return []
    return [ViolationFinding(
        type=ViolationType.PROFANITY,
        description=f"Contains inappropriate language: {', '.join(found)}",
        severity=max(2, min(len(found) + 1, 4)),
        confidence=0.8,
    )]


def detect_harassment(content: str, patterns: Sequence[Pattern]) -> List[ViolationFinding]:
    text = _as_text(content)
    if not any(pattern.search(text) for pattern in patterns):
        return []
    return [ViolationFinding(
        type=ViolationType.HARASSMENT,
        description="Contains harassing or threatening language",
        severity=4,
        confidence=0.9,
    )]


def spam_score(content: str) -> Tuple[int, List[str]]:
    """Посчитать спам-балл и причины."""
    text = _as_text(content)
    score = 0
    reasons = []

    if REPEATED_CHARS_REGEX.search(text):
        score += SPAM_REPEATED_CHARS_SCORE
        reasons.append("excessive repeated characters")

    if ALL_CAPS_REGEX.fullmatch(text):
        score += SPAM_ALL_CAPS_SCORE
        reasons.append("excessive capitalization")

    if URL_REGEX.search(text):
        score += SPAM_URL_SCORE
        reasons.append("contains URLs")

    return score, reasons


def detect_spam(content: str) -> List[ViolationFinding]:
    score, reasons = spam_score(content)
    if score < SPAM_TRIGGER_SCORE:
        return []
    return [ViolationFinding(
        type=ViolationType.SPAM,
        description=f"Potential spam detected: {', '.join(reasons)}",
        severity=min(score // 2, 3),
        confidence=0.7,
    )]


def detect_excessive_length(
    content: str,
    max_length: int = config.MODERATION_MAX_MESSAGE_LENGTH
) -> List[ViolationFinding]:
    length = len(_as_text(content))
    if length <= max_length:
        return []
    return [ViolationFinding(
        type=ViolationType.EXCESSIVE_LENGTH,
        description=f"Message too long ({length} characters, max {max_length})",
        severity=1,
        confidence=1.0,
    )]


def detect_empty_message(content: str) -> List[ViolationFinding]:
    if _as_text(content).strip():
        return []
    return [ViolationFinding(
        type=ViolationType.EMPTY_MESSAGE,
        description="Empty or whitespace-only message",
        severity=1,
        confidence=1.0,
    )]


# ============================================================================
# HISTORY DETECTORS
# ============================================================================

def detect_repeated_messages(content: str, history: Sequence[Message]) -> List[ViolationFinding]:
    """Одинаковый текст (без учёта регистра) не меньше 3 раз, считая проверяемое сообщение."""
    lower_content = _as_text(content).lower()
    duplicates = sum(1 for message in history if _as_text(message.content).lower() == lower_content)
    count = duplicates + 1
    if count < REPEATED_MESSAGES_THRESHOLD:
        return []
    return [ViolationFinding(
        type=ViolationType.REPEATED_MESSAGES,
        description=f"Message repeated {count} times",
        severity=2,
        confidence=1.0,
    )]


def detect_rapid_posting(
    history: Sequence[Message],
    now: Optional[float] = None,
    threshold: int = RAPID_POSTING_THRESHOLD,
    window_sec: int = RAPID_POSTING_WINDOW_SEC
) -> List[ViolationFinding]:
    """Не меньше threshold недавних сообщений за последние window_sec секунд."""
    if now is None:
        now = time.time()
    recent = [message for message in history if now - message.created_at < window_sec]
    if len(recent) < threshold:
        return []
    return [ViolationFinding(
        type=ViolationType.RAPID_POSTING,
        description=f"{len(recent)} messages in {window_sec} seconds",
        severity=3,
        confidence=1.0,
    )]


# ============================================================================
# DETECTOR SET
# ============================================================================

class DetectorSet:
    """Набор детекторов с настраиваемыми списками слов и паттернов.

    Все детекторы выполняются всегда и независимо друг от друга.
    Порядок результатов фиксирован: сначала проверки текста,
    затем повторы, затем частота сообщений.
    """

    def __init__(
        self,
        profanity_words: Optional[Sequence[str]] = None,
        harassment_patterns: Optional[Sequence[str]] = None,
        max_length: int = config.MODERATION_MAX_MESSAGE_LENGTH
    ):
        self.profanity_words = [
            w.lower() for w in (PROFANITY_WORDS if profanity_words is None else profanity_words)
        ]
        self.harassment_patterns = compile_harassment_patterns(
            HARASSMENT_PATTERNS if harassment_patterns is None else harassment_patterns
        )
        self.max_length = max_length

    def detect_content(self, content: str) -> List[ViolationFinding]:
        """Проверки, которым нужен только текст."""
        findings: List[ViolationFinding] = []
        findings.extend(detect_profanity(content, self.profanity_words))
        findings.extend(detect_harassment(content, self.harassment_patterns))
        findings.extend(detect_spam(content))
        findings.extend(detect_excessive_length(content, self.max_length))
        findings.extend(detect_empty_message(content))
        return findings

    def detect(
        self,
        content: str,
        history: Sequence[Message] = (),
        now: Optional[float] = None
    ) -> List[ViolationFinding]:
        """Запустить все детекторы.

        Args:
            content: Текст проверяемого сообщения
            history: Недавние сообщения пользователя в комнате, новые первые
            now: Текущее время
        """
        findings = self.detect_content(content)
        findings.extend(detect_repeated_messages(content, history))
        findings.extend(detect_rapid_posting(history, now))
        return findings
