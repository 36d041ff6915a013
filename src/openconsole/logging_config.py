"""Logging setup for openconsole."""

import logging
import sys
from typing import TextIO

from openconsole.config import CONFIG

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
}

# Third-party loggers that drown out the workflow steps at debug level
_NOISY_LOGGERS = ('httpx', 'httpcore', 'asyncio', 'playwright', 'bubus')


def setup_logging(
    stream: TextIO | None = None,
    log_level: str | None = None,
    force_setup: bool = False,
) -> logging.Logger:
    """Configure the ``openconsole`` logger hierarchy.

    Args:
        stream: Stream for the handler; defaults to stderr.
        log_level: One of debug/info/warning/error/critical. Defaults to
            ``OPENCONSOLE_LOGGING_LEVEL``.
        force_setup: Configure even when ``OPENCONSOLE_SETUP_LOGGING`` is false
            or a handler is already installed.

    Returns:
        The package root logger.
    """
    root = logging.getLogger('openconsole')

    if not force_setup and not CONFIG.SETUP_LOGGING:
        return root
    if root.handlers and not force_setup:
        return root

    level = _LEVELS.get((log_level or CONFIG.LOGGING_LEVEL).lower(), logging.INFO)

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.setLevel(level)
    root.propagate = False

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    return root
