from __future__ import annotations

import logging
import os

_NOISY_LOGGERS = ("PIL", "multipart", "httpx")


def configure_logging(default_level: str = "INFO") -> None:
    level_name = (
        os.getenv("SEQGEN_LOG_LEVEL") or os.getenv("LOG_LEVEL") or default_level
    ).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    # Pillow logs every plugin import at DEBUG
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
