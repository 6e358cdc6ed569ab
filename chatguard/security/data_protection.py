# Copyright (c) 2025 sprowii
"""Защита персональных данных.

Модуль обеспечивает:
- Псевдонимизацию user_id в логах приложения (HMAC с солью)
- Шифрование свободного текста апелляций в журнале активности

При утечке журнала злоумышленник получит только:
- Хэшированные ID в логах приложения
- Зашифрованные тексты апелляций (без ключа бесполезны)
"""
import base64
import hashlib
import hmac
import os
import re
import secrets
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from chatguard.logging_config import log

ENCRYPTED_PREFIX = "enc:"


# ============================================================================
# КОНФИГУРАЦИЯ
# ============================================================================

# Если соль не задана, генерируется при запуске (псевдонимы изменятся после рестарта)
_HASH_SALT = os.getenv("DATA_HASH_SALT")
if not _HASH_SALT:
    log.warning(
        "DATA_HASH_SALT не задан! Генерирую временную соль. "
        "ВАЖНО: Задайте DATA_HASH_SALT в переменных окружения для production!"
    )
    _HASH_SALT = secrets.token_hex(32)

_ENCRYPTION_KEY = os.getenv("DATA_ENCRYPTION_KEY")
_fernet: Optional[Fernet] = None


def _build_fernet(raw_key: str) -> Fernet:
    try:
        # Ключ уже в формате Fernet
        return Fernet(raw_key.encode())
    except ValueError:
        # Обычный пароль - деривируем ключ
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_HASH_SALT.encode()[:16],
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(raw_key.encode()))
        return Fernet(key)


if _ENCRYPTION_KEY:
    _fernet = _build_fernet(_ENCRYPTION_KEY)
else:
    log.warning(
        "DATA_ENCRYPTION_KEY не задан! Тексты апелляций сохраняются без шифрования."
    )


def configure_encryption(raw_key: Optional[str]) -> None:
    """Переопределить ключ шифрования (None отключает шифрование)."""
    global _fernet
    _fernet = _build_fernet(raw_key) if raw_key else None


def encryption_enabled() -> bool:
    return _fernet is not None


# ============================================================================
# ПСЕВДОНИМИЗАЦИЯ
# ============================================================================

def pseudonymize_id(user_id: Any, context: str = "default") -> str:
    """Псевдонимизирует user_id через HMAC-SHA256.

    Args:
        user_id: Реальный ID пользователя
        context: Контекст использования (разные контексты дают разные псевдонимы)

    Returns:
        Псевдоним в формате "u_<hash[:16]>"
    """
    message = f"{context}:{user_id}".encode()
    h = hmac.new(_HASH_SALT.encode(), message, hashlib.sha256)
    return f"u_{h.hexdigest()[:16]}"


def safe_log_action(
    action_type: str,
    target_user_id: str,
    admin_id: Optional[str] = None,
    reason: Optional[str] = None
) -> str:
    """Формирует безопасную строку для лога действия модерации."""
    target = pseudonymize_id(target_user_id)
    admin = pseudonymize_id(admin_id) if admin_id else "auto"

    safe_reason = ""
    if reason:
        # Убираем @username из причины
        safe_reason = re.sub(r"@\w+", "@***", reason)[:50]

    return f"[{action_type}] target={target} by={admin} reason={safe_reason}"


# ============================================================================
# ШИФРОВАНИЕ ТЕКСТА
# ============================================================================

def encrypt_data(data: str) -> Optional[str]:
    """Шифрует строку. None если шифрование отключено."""
    if not _fernet:
        return None
    return _fernet.encrypt(data.encode()).decode()


def decrypt_data(encrypted: str) -> Optional[str]:
    """Расшифровывает строку. None при ошибке или без ключа."""
    if not _fernet:
        return None
    try:
        return _fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken as exc:
        log.error(f"Ошибка расшифровки: {exc!r}")
        return None


def encrypt_text(text: str) -> str:
    """Шифрует текст с префиксом "enc:" или возвращает исходный если шифрование отключено."""
    encrypted = encrypt_data(text)
    if encrypted:
        return f"{ENCRYPTED_PREFIX}{encrypted}"
    return text


def decrypt_text(text: str) -> Optional[str]:
    """Расшифровывает текст, сохранённый через encrypt_text."""
    if not text or not text.startswith(ENCRYPTED_PREFIX):
        return text
    if not _fernet:
        log.warning("Попытка расшифровать данные без ключа шифрования")
        return None
    return decrypt_data(text[len(ENCRYPTED_PREFIX):])


def generate_encryption_key() -> str:
    """Генерирует новый ключ шифрования Fernet.

    python -c "from chatguard.security.data_protection import generate_encryption_key; print(generate_encryption_key())"
    """
    return Fernet.generate_key().decode()


def check_security_config() -> Dict[str, Any]:
    """Проверяет конфигурацию безопасности."""
    issues = []

    if not os.getenv("DATA_HASH_SALT"):
        issues.append("DATA_HASH_SALT не задан - используется временная соль")

    if not _fernet:
        issues.append("DATA_ENCRYPTION_KEY не задан - шифрование отключено")

    return {
        "encryption_enabled": _fernet is not None,
        "hash_salt_configured": bool(os.getenv("DATA_HASH_SALT")),
        "issues": issues,
        "secure": len(issues) == 0,
    }
