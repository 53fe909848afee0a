"""Logging setup shared by the CLI, the API server and every stage.

Modules get their logger with:
    from hunter.logging_config import get_logger
    logger = get_logger(__name__)

Records from the ``hunter`` and ``api`` namespaces go to one rotating file,
``~/.opportunity-hunter/hunter.log`` unless $HUNTER_LOG_FILE says otherwise.
Set $HUNTER_LOG_CONSOLE=1 to also echo warnings and errors to stderr (useful
under uvicorn, where the Rich console is not in play).
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path.home() / ".opportunity-hunter"
LOG_FILE = os.environ.get("HUNTER_LOG_FILE", str(LOG_DIR / "hunter.log"))
LOG_LEVEL = os.environ.get("HUNTER_LOG_LEVEL", "DEBUG")
LOG_CONSOLE = os.environ.get("HUNTER_LOG_CONSOLE", "") not in ("", "0", "false")

MAX_BYTES = 10 * 1024 * 1024  # 10 MB per file
BACKUP_COUNT = 3

NAMESPACES = ("hunter", "api")

FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_initialized = False


def _handlers() -> list[logging.Handler]:
    formatter = logging.Formatter(FORMAT, datefmt=DATE_FORMAT)

    Path(LOG_FILE).parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]

    if LOG_CONSOLE:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.WARNING)
        console.setFormatter(formatter)
        handlers.append(console)
    return handlers


def setup_logging() -> None:
    """Attach the handlers to the project namespaces once per process."""
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = getattr(logging, LOG_LEVEL.upper(), logging.DEBUG)
    handlers = _handlers()
    for name in NAMESPACES:
        namespace = logging.getLogger(name)
        namespace.setLevel(level)
        if any(isinstance(h, RotatingFileHandler) for h in namespace.handlers):
            continue
        for handler in handlers:
            namespace.addHandler(handler)

    logging.getLogger("hunter").info("Logging to %s (level=%s)", LOG_FILE, LOG_LEVEL)


def get_logger(name: str) -> logging.Logger:
    """Logger for a module; configures logging on first use."""
    setup_logging()
    return logging.getLogger(name)
