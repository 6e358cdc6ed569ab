# Copyright (c) 2025 sprowii
from cryptography.fernet import Fernet

from chatguard.security.data_protection import (
    check_security_config,
    configure_encryption,
    decrypt_text,
    encrypt_text,
    encryption_enabled,
    generate_encryption_key,
    pseudonymize_id,
    safe_log_action,
)


def test_pseudonymize_is_stable_and_contextual():
    alias = pseudonymize_id("user-42")
    assert alias == pseudonymize_id("user-42")
    assert alias.startswith("u_") and len(alias) == 18
    assert alias != pseudonymize_id("user-42", context="appeal")
    assert "user-42" not in alias


def test_safe_log_action_hides_ids_and_usernames():
    line = safe_log_action("ban", "user-42", admin_id="admin-1", reason="spam from @someone")
    assert "user-42" not in line
    assert "admin-1" not in line
    assert "@someone" not in line
    assert line.startswith("[ban] target=u_")

    assert "by=auto" in safe_log_action("mute", "user-42")


def test_text_passes_through_without_key(no_encryption):
    assert not encryption_enabled()
    assert encrypt_text("hello") == "hello"
    assert decrypt_text("hello") == "hello"
    assert decrypt_text("enc:whatever") is None


def test_fernet_key_and_password(no_encryption):
    configure_encryption(generate_encryption_key())
    token = encrypt_text("secret appeal")
    assert token.startswith("enc:")
    assert decrypt_text(token) == "secret appeal"

    configure_encryption("plain password")
    assert decrypt_text(encrypt_text("другой текст")) == "другой текст"
    # Текст, зашифрованный другим ключом, не расшифровывается
    assert decrypt_text(token) is None


def test_generated_key_is_valid():
    Fernet(generate_encryption_key().encode())


def test_security_report(no_encryption):
    report = check_security_config()
    assert report["encryption_enabled"] is False
    assert not report["secure"]
    assert any("DATA_ENCRYPTION_KEY" in issue for issue in report["issues"])
