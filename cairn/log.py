"""Logging setup: a per-session debug file plus an optional Rich console handler."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "cairn"
FILE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


@dataclass
class LogSession:
    session_id: str
    logger: logging.Logger
    path: Path | None
    handlers: list[logging.Handler]

    def close(self) -> None:
        for handler in self.handlers:
            self.logger.removeHandler(handler)
            handler.close()
        self.handlers.clear()
        self.logger.propagate = True


def init_logging(
    log_dir: str | Path | None,
    console_level: str = "none",
    session_id: str | None = None,
) -> LogSession:
    """Attach the session handlers to the ``cairn`` logger.

    ``log_dir=None`` skips the file handler. ``console_level="none"`` keeps
    log records off the terminal.
    """
    session_id = session_id or uuid.uuid4().hex[:8]
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handlers: list[logging.Handler] = []

    path = None
    if log_dir is not None:
        directory = Path(log_dir).expanduser()
        try:
            directory.mkdir(parents=True, exist_ok=True)
            stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
            path = directory / f"session-{stamp}-{session_id}.log"
            file_handler = logging.FileHandler(path, encoding="utf-8")
        except OSError as e:
            path = None
            logger.debug("session log disabled: %s", e)
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
            handlers.append(file_handler)

    level = _LEVELS.get(console_level.lower())
    if level is not None:
        console_handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=False,
        )
        console_handler.setLevel(level)
        handlers.append(console_handler)

    if not handlers:
        handlers.append(logging.NullHandler())
    for handler in handlers:
        logger.addHandler(handler)

    logger.info("session %s started", session_id)
    return LogSession(session_id, logger, path, handlers)
