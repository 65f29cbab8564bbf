"""Logging setup and an in-memory record buffer for a log panel.

Modules log through ``logging.getLogger(__name__)``.  Attach a
:class:`LogBuffer` to keep the most recent records around as
:class:`LogEntry` objects; structured payloads travel in
``extra={"data": ...}``.
"""

import logging
import threading
import uuid
from collections import deque
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

LogLevel = Literal["debug", "info", "warn", "error"]

_LEVEL_NAMES: dict[int, LogLevel] = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


_configured_handlers: list[logging.Handler] = []


def configure_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """Send ``drawloop`` logs to stderr and optionally to *log_file*.

    Calling it again replaces the handlers added by the previous call.
    """
    logger = logging.getLogger("drawloop")
    while _configured_handlers:
        old = _configured_handlers.pop()
        logger.removeHandler(old)
        old.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _configured_handlers.append(handler)


class LogEntry(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: int
    level: LogLevel
    category: str
    message: str
    data: Any = None


class LogBuffer(logging.Handler):
    """Keeps the last ``max_logs`` records and notifies listeners.

    Args:
        max_logs: Number of entries retained; older ones are dropped.
        level: Minimum level captured.
    """

    def __init__(self, max_logs: int = 1000, level: int = logging.DEBUG):
        super().__init__(level)
        self._logs: deque[LogEntry] = deque(maxlen=max_logs)
        self._listeners: list[Callable[[LogEntry], None]] = []
        self._mutex = threading.Lock()

    def add_listener(self, listener: Callable[[LogEntry], None]) -> Callable[[], None]:
        """Register *listener*; returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def emit(self, record: logging.LogRecord) -> None:
        entry = LogEntry(
            timestamp=int(record.created * 1000),
            level=_LEVEL_NAMES.get(record.levelno, "info"),
            category=record.name,
            message=record.getMessage(),
            data=getattr(record, "data", None),
        )
        with self._mutex:
            self._logs.append(entry)
        for listener in list(self._listeners):
            try:
                listener(entry)
            except Exception:
                self.handleError(record)

    def get_all(self) -> list[LogEntry]:
        with self._mutex:
            return list(self._logs)

    def get_by_level(self, level: LogLevel) -> list[LogEntry]:
        return [e for e in self.get_all() if e.level == level]

    def get_by_category(self, category: str) -> list[LogEntry]:
        return [e for e in self.get_all() if e.category == category]

    def get_recent(self, count: int) -> list[LogEntry]:
        if count <= 0:
            return []
        return self.get_all()[-count:]

    def clear(self) -> None:
        with self._mutex:
            self._logs.clear()
