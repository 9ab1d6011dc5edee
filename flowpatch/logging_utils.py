from __future__ import annotations

import logging
import os


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def configure_logging(level: str | None = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL", "WARNING")).upper()
    resolved = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
    # Integration requests would otherwise log full URLs with query strings.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
