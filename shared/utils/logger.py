import logging
import sys
from typing import Any, Iterable

FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# Library loggers that would otherwise flood stdout at DEBUG
NOISY_LOGGERS = ("sqlalchemy.engine", "httpx", "urllib3")


def _level(level: str) -> int:
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logger(name: str, level: str = "INFO", quiet: Iterable[str] = NOISY_LOGGERS) -> logging.Logger:
    """Setup structured logger for services"""

    logger = logging.getLogger(name)
    logger.setLevel(_level(level))

    # create_app() may run more than once per process (tests)
    if any(getattr(h, "_tracker_handler", False) for h in logger.handlers):
        return logger

    # Console handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(_level(level))
    handler._tracker_handler = True
    handler.setFormatter(logging.Formatter(FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
    logger.addHandler(handler)

    for noisy in quiet:
        logging.getLogger(noisy).setLevel(max(_level(level), logging.WARNING))

    return logger


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any):
    """Log ``message`` followed by ``key=value`` pairs, skipping empty values"""
    context_str = " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
    full_message = f"{message} {context_str}" if context_str else message
    logger.log(_level(level), full_message)
