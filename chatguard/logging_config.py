# Copyright (c) 2025 sprowii
import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Уровень берётся из аргумента или LOG_LEVEL, по умолчанию INFO."""
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        format=LOG_FORMAT,
        level=getattr(logging, level_name, logging.INFO),
    )
    return logging.getLogger("chatguard")


log = configure_logging()
