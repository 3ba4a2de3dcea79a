"""Configuracion de logging del paquete.

Verbosity levels:
- 0 (default): WARNING
- 1 (-v):      INFO - sessions, writes, backend selection
- 2 (-vv):     DEBUG - queries, HTTP requests, chart inputs
- 3+ (-vvv):   TRACE - raw rows and payloads
"""

from __future__ import annotations

import logging
import sys

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER = "diacare"


def setup_logging(verbosity: int = 0, quiet: bool = False) -> logging.Logger:
    """Configure the ``diacare`` logger.

    Args:
        verbosity: Number of -v flags (0=WARNING, 1=INFO, 2=DEBUG, 3+=TRACE).
        quiet: If True, only errors are shown.

    Returns:
        The configured package logger.
    """
    if quiet:
        level = logging.ERROR
    elif verbosity <= 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    elif verbosity == 2:
        level = logging.DEBUG
    else:
        level = TRACE

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    if verbosity >= 2:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
        )
    elif verbosity == 1:
        formatter = logging.Formatter("[%(levelname)s] %(message)s")
    else:
        formatter = logging.Formatter("%(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # urllib3 retries are only interesting when tracing
    if verbosity >= 3:
        logging.getLogger("urllib3").setLevel(logging.DEBUG)

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger under the package hierarchy.

    Args:
        name: Module name (e.g. ``diacare.service``). None returns the root
            package logger.
    """
    if name is None:
        return logging.getLogger(ROOT_LOGGER)
    return logging.getLogger(name)
