"""
Logging utilities: console/file configuration and a queue handler that
forwards records to an operator front-end.
"""
from __future__ import annotations

import logging
from pathlib import Path
from queue import Queue
from typing import NamedTuple, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class StatusEvent(NamedTuple):
    level: str
    message: str
    subject: Optional[str]


class QueueLogHandler(logging.Handler):
    """
    Forwards records to a queue as StatusEvent tuples.

    The `subject` extra attached by the pipeline modules is carried along,
    so a front-end can group the session's status line per subject.
    """

    def __init__(self, log_queue: Queue, level: int = logging.INFO):
        super().__init__(level)
        self.log_queue = log_queue
        self.setFormatter(logging.Formatter("%(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            event = StatusEvent(
                level=record.levelname,
                message=self.format(record),
                subject=getattr(record, "subject", None),
            )
            self.log_queue.put(event)
        except Exception:
            self.handleError(record)


def attach_queue_handler(
    log_queue: Queue,
    logger_name: Optional[str] = "qbank_toolkit",
    level: int = logging.INFO,
) -> QueueLogHandler:
    """
    Attach a QueueLogHandler to the given logger.

    The logger's own level is lowered to `level` if it would otherwise
    drop the records before they reach the handler.

    Returns:
        The attached handler (for later removal).
    """
    logger = logging.getLogger(logger_name)
    handler = QueueLogHandler(log_queue, level=level)
    logger.addHandler(handler)
    if logger.getEffectiveLevel() > level:
        logger.setLevel(level)
    return handler


def detach_queue_handler(handler: QueueLogHandler, logger_name: Optional[str] = "qbank_toolkit") -> None:
    logging.getLogger(logger_name).removeHandler(handler)


def configure_logging(level: int = logging.INFO, log_file: Optional[Path] = None) -> None:
    """
    Configure root logging for command-line runs.

    Args:
        level: Root log level.
        log_file: Optional file that receives the same records.
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
