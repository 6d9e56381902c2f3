# buyermatch/logging_config.py
from __future__ import annotations

import logging

NOISY_LOGGERS = ("httpx", "apscheduler", "uvicorn", "aiosqlite")


def configure_logging(level: int = logging.INFO) -> None:
    """Root config for scripts; chatty third-party loggers only report warnings."""
    logging.basicConfig(level=level, format="%(levelname)s:%(name)s:%(message)s")
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
