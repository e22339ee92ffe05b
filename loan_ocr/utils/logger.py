"""Logging for the recognition pipeline.

Modules log through ``get_logger(__name__)``. The API server and the CLI
call ``setup_logging`` once at start-up; pipeline stages report their
duration with ``log_stage``. Log records carry counts and timings only,
never document text or figures.
"""

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "pypdf")


def setup_logging(level: str = "INFO") -> None:
    """Install a stdout handler on the root logger.

    A second call only changes the level; it never adds a handler.

    Args:
        level: Level name such as ``DEBUG`` or ``WARNING``. Unknown names
            fall back to ``INFO``.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def log_stage(logger: logging.Logger, stage: str) -> Iterator[None]:
    """Log how long the enclosed block took, at DEBUG level.

    A block that raises is logged as failed and the exception propagates.
    """
    started = time.perf_counter()
    try:
        yield
    except Exception:
        logger.debug("%s failed after %.0f ms", stage, (time.perf_counter() - started) * 1000)
        raise
    logger.debug("%s took %.0f ms", stage, (time.perf_counter() - started) * 1000)
