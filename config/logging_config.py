"""
Karat Pricing - Logging Setup
==============================
Root level plus per-category levels so noisy libraries (SQLAlchemy,
httpx, APScheduler) can be silenced independently.

Usage:
    from config.logging_config import setup_logging
    setup_logging()   # once, in the FastAPI lifespan
"""

import logging
import sys

from config import settings


_CATEGORY_LEVELS = {
    "LOG_LEVEL_SQL": ["sqlalchemy.engine", "sqlalchemy.pool"],
    "LOG_LEVEL_HTTP": ["httpx", "httpcore"],
    "LOG_LEVEL_SCHEDULER": ["apscheduler"],
}


def _parse_level(raw: str) -> int:
    level = logging.getLevelName(str(raw).upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> None:
    root = logging.getLogger()
    root.setLevel(_parse_level(settings.LOG_LEVEL))

    # uvicorn usually installs a handler; scripts and tests may not
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-8s %(name)s - %(message)s"))
        root.addHandler(handler)

    for setting_name, logger_names in _CATEGORY_LEVELS.items():
        level = _parse_level(getattr(settings, setting_name, "INFO"))
        for name in logger_names:
            logging.getLogger(name).setLevel(level)

    logging.getLogger("karat").debug(f"Logging configured (root={settings.LOG_LEVEL})")
