"""
Logging configuration for the waiter bot.

Usage:
    from waiter_bot.logging_config import setup_logging
    setup_logging()  # Call once at process startup

Environment variables:
    LOG_LEVEL: Set to DEBUG, INFO, WARNING, ERROR, or CRITICAL (default: INFO)
    LOG_LEVELS: Per-module overrides, e.g. "evaluator=DEBUG,services.session=WARNING".
        Names are relative to the waiter_bot package unless they already start
        with "waiter_bot" or name a third-party logger listed in NOISY_LOGGERS.
"""
import logging
import os
import sys
from typing import Dict

VALID_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Chatty third-party loggers held at WARNING unless we are debugging
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "instructor", "sqlalchemy.engine")


def parse_level_overrides(value: str) -> Dict[str, int]:
    """
    Parse "name=LEVEL,name=LEVEL" into logger names and numeric levels.

    Malformed entries and unknown levels are skipped.
    """
    overrides: Dict[str, int] = {}
    for entry in (value or "").split(","):
        name, sep, level = entry.partition("=")
        name, level = name.strip(), level.strip().upper()
        if not sep or not name or level not in VALID_LEVELS:
            continue
        if not (name == "waiter_bot" or name.startswith("waiter_bot.") or name in NOISY_LOGGERS):
            name = f"waiter_bot.{name}"
        overrides[name] = getattr(logging, level)
    return overrides


def setup_logging(level: str = None, overrides: str = None) -> None:
    """
    Configure logging for the waiter bot.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If not provided, reads from LOG_LEVEL env var, defaults to INFO.
        overrides: Per-module levels in LOG_LEVELS format. If not provided,
               reads from the LOG_LEVELS env var.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    level = level.upper()

    if level not in VALID_LEVELS:
        level = "INFO"

    numeric_level = getattr(logging, level)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )

    logging.getLogger("waiter_bot").setLevel(numeric_level)

    if level != "DEBUG":
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    if overrides is None:
        overrides = os.getenv("LOG_LEVELS", "")
    for name, module_level in parse_level_overrides(overrides).items():
        logging.getLogger(name).setLevel(module_level)

    logger = logging.getLogger(__name__)
    logger.debug("Logging configured at %s level", level)
