"""
Central logging configuration for memochron.

Quiets verbose third-party loggers while keeping memochron's own diagnostics
at the requested level.
"""

import logging
import os
from typing import Optional

THIRD_PARTY_LEVELS: dict[str, int] = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> int:
    """
    Configure logger levels for memochron and its dependencies.

    Args:
        debug_mode: Whether to enable debug logging for memochron modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        MEMOCHRON_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        MEMOCHRON_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The root level that was applied
    """
    env_debug = os.getenv("MEMOCHRON_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("MEMOCHRON_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = env_debug or debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)
    logging.getLogger().setLevel(root_level)

    for name, level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger("memochron").setLevel(logging.DEBUG if final_debug else root_level)

    logging.getLogger(__name__).debug(
        "Logging configured: root=%s debug=%s", logging.getLevelName(root_level), final_debug
    )
    return root_level
