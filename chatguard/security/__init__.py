# Copyright (c) 2025 sprouee
"""Security-related helpers.

Модули:
- data_protection: Псевдонимизация ID и шифрование текстов апелляций
"""
from chatguard.security.data_protection import (
    check_security_config,
    configure_encryption,
    decrypt_data,
    decrypt_text,
    encrypt_data,
    encrypt_text,
    encryption_enabled,
    generate_encryption_key,
    pseudonymize_id,
    safe_log_action,
)

__all__ = [
    "check_security_config",
    "configure_encryption",
    "decrypt_data",
    "decrypt_text",
    "encrypt_data",
    "encrypt_text",
    "encryption_enabled",
    "generate_encryption_key",
    "pseudonymize_id",
    "safe_log_action",
]
