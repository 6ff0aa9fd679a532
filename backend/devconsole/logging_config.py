"""
Logging configuration.

Console logging through the standard library, with a simple or detailed
format and quieter levels for chatty third-party libraries.
"""
import logging
import sys
from typing import Optional

SIMPLE_FORMAT = "%(levelname)s - %(name)s - %(message)s"

DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"

# Third-party libraries (reduce noise)
MODULE_LOG_LEVELS = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "openai": "WARNING",
    "aiosqlite": "WARNING",
    "asyncio": "WARNING",
    "uvicorn": "INFO",
    "uvicorn.access": "WARNING",
}

_configured = False


def setup_logging(log_level: Optional[str] = None, log_format: Optional[str] = None) -> None:
    """
    Configure logging for the application.

    Subsequent calls are no-ops, so repeated app startups do not stack
    handlers.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL (default from settings)
        log_format: "simple" or "detailed" (default from settings)
    """
    global _configured
    if _configured:
        return

    from devconsole.config import settings

    level = (log_level or settings.log_level).upper()
    fmt = SIMPLE_FORMAT if (log_format or settings.log_format) == "simple" else DETAILED_FORMAT

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt))

    package_logger = logging.getLogger("devconsole")
    package_logger.setLevel(level)
    package_logger.addHandler(handler)
    package_logger.propagate = False

    for name, module_level in MODULE_LOG_LEVELS.items():
        logging.getLogger(name).setLevel(module_level)

    _configured = True
    package_logger.debug("Logging configured: level=%s format=%s", level, fmt)
