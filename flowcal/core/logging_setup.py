"""Central logging configuration for flowcal.

Console output uses a colorlog formatter; every record carries the request
correlation id so aggregation and feed-fetch logs can be tied to one API call.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

LOG_FORMAT = (
    "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s [%(request_id)s] %(name)s: %(message)s"
)

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

_TRUTHY = ("1", "true", "yes", "on")


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        from ..api.middleware.correlation_id import get_request_id

        record.request_id = get_request_id()
        return True


def _env_debug() -> bool:
    return os.getenv("FLOWCAL_DEBUG", "").strip().lower() in _TRUTHY


def configure_logging(
    level_name: Optional[str] = None, debug_mode: bool = False, force_debug: Optional[bool] = None
) -> int:
    """Configure console logging and third-party logger levels.

    Args:
        level_name: Root level name (DEBUG, INFO, WARNING, ERROR)
        debug_mode: Whether to enable debug logging for flowcal modules
        force_debug: Override debug mode setting (None to use env var detection)

    Returns:
        The root level that was applied

    Environment Variables:
        FLOWCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        FLOWCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or _env_debug()

    root_level = logging.DEBUG if final_debug else logging.INFO
    env_log_level = os.getenv("FLOWCAL_LOG_LEVEL", "").upper()
    requested = (level_name or env_log_level or "").upper()
    if not final_debug and requested in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, requested)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    correlation_filter = CorrelationIdFilter()
    if not root_logger.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS))
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            if not any(isinstance(f, CorrelationIdFilter) for f in existing_handler.filters):
                existing_handler.addFilter(correlation_filter)

    logger_config: dict[str, int] = {
        "aiohttp.access": logging.WARNING,
        "aiohttp.server": logging.WARNING,
        "aiohttp.web": logging.INFO,
        "httpx": logging.WARNING,
        "httpcore": logging.WARNING,
        "asyncio": logging.WARNING,
        "icalendar": logging.INFO,
        "flowcal": logging.DEBUG if final_debug else root_level,
    }
    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    logging.getLogger(__name__).debug(
        "Logging initialized at level %s (debug=%s)", logging.getLevelName(root_level), final_debug
    )
    return root_level

