# Copyright (c) 2025 sprowii
"""Исключения конвейера модерации."""


class ModerationError(Exception):
    """Базовое исключение модерации."""


class PersistenceError(ModerationError):
    """Ошибка чтения или записи в хранилище."""


class InvalidInputError(ModerationError, ValueError):
    """Некорректные данные записи или нарушения.

    Текст сообщения сам по себе никогда не вызывает эту ошибку:
    пустые и сверхдлинные сообщения обрабатываются детекторами.
    """


class ConsistencyError(ModerationError):
    """Нарушен производный инвариант (например, флаг бана в профиле
    не совпадает с наличием активного бана)."""
