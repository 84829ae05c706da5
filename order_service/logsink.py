"""
Centralised log sink.

Service logs go to stdout through ``logging`` and, while the app is running,
into the ``system_logs`` table through ``StoreLogHandler``, which runs on a
QueueListener thread so logging callers never wait on Postgres. Entries that other
services push onto the ``system_logs`` queue are mirrored into the same table.
"""

import copy
import logging
import queue
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
LOG_LEVELS = ("info", "warning", "error", "debug")


def level_name(levelno: int) -> str:
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warning"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


def _exception_repr(record: logging.LogRecord) -> Optional[str]:
    if record.exc_info and record.exc_info[1] is not None:
        return repr(record.exc_info[1])
    return None


def configure_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("order_service").setLevel(level.upper())
    # Suppress noisy logs from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class StoreLogHandler(logging.Handler):
    """Writes each record as a log entry through the store."""

    def __init__(self, store, service: str, level=logging.INFO):
        super().__init__(level)
        self.store = store
        self.service = service

    def emit(self, record: logging.LogRecord) -> None:
        try:
            data = getattr(record, "data", None) or {}
            if not isinstance(data, dict):
                data = {"value": data}
            error = getattr(record, "error", None) or _exception_repr(record)
            if error:
                data = {**data, "error": error}
            self.store.insert_log({
                "timestamp": datetime.fromtimestamp(record.created, timezone.utc),
                "service": self.service,
                "level": level_name(record.levelno),
                "message": record.getMessage(),
                "data": data,
            })
        except Exception:
            self.handleError(record)


class DeferredStoreHandler(QueueHandler):
    """Hands records to a QueueListener thread; emit never touches the store."""

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record = copy.copy(record)
        record.message = record.getMessage()
        record.msg = record.message
        record.args = None
        record.error = _exception_repr(record)
        record.exc_info = None
        record.exc_text = None
        return record


def _parse_timestamp(value) -> datetime:
    if isinstance(value, str):
        try:
            ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return datetime.now(timezone.utc)
        return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def entry_from_message(message) -> dict:
    """Normalise an arbitrary log message from another service."""
    if not isinstance(message, dict):
        message = {"message": message}
    level = str(message.get("level", "info")).lower()
    data = message.get("data")
    if data is None:
        data = {}
    elif not isinstance(data, dict):
        data = {"value": data}
    return {
        "timestamp": _parse_timestamp(message.get("timestamp")),
        "service": str(message.get("service") or "unknown"),
        "level": level if level in LOG_LEVELS else "info",
        "message": str(message.get("message", "")),
        "data": data,
    }


class LogSink:
    def __init__(self, store, service: str):
        self.store = store
        self.service = service

    def handler(self) -> StoreLogHandler:
        return StoreLogHandler(self.store, self.service)

    def background_handler(self) -> tuple[DeferredStoreHandler, QueueListener]:
        """A handler for request and event-loop threads plus the listener that writes to the store.

        Start the listener before attaching the handler; stopping it flushes pending records.
        """
        records = queue.SimpleQueue()
        listener = QueueListener(records, self.handler(), respect_handler_level=True)
        return DeferredStoreHandler(records), listener

    def mirror(self, message) -> bool:
        """Store one entry taken off the ``system_logs`` queue."""
        self.store.insert_log(entry_from_message(message))
        return True

    def query(
        self,
        service: Optional[str] = None,
        level: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        skip: int = 0,
    ) -> list[dict]:
        return self.store.find_logs(
            service=service, level=level, start=start, end=end, limit=limit, skip=skip
        )
