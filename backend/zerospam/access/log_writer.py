from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import TYPE_CHECKING, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import zerospam.core.db as db_module
from zerospam.core.config import settings
from zerospam.core.errors import StoreWriteError
from zerospam.core.metrics import record_log_write_failure
from zerospam.crud.log import append_log_entry

if TYPE_CHECKING:
    from zerospam.access.engine import Decision
    from zerospam.detectors.base import VisitorEvent


logger = logging.getLogger(__name__)


class EventLogWriter:
    """
    Best-effort event log appends. In async mode writes run on a single
    background worker with their own session, so a slow or broken database
    never delays or changes an access decision.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        *,
        asynchronous: bool | None = None,
        max_pending: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._async = settings.EVENT_LOG_ASYNC if asynchronous is None else asynchronous
        self._max_pending = max_pending or settings.EVENT_LOG_MAX_PENDING
        self._executor: ThreadPoolExecutor | None = None
        self._pending: set[Future] = set()
        self._lock = Lock()

    def _session(self) -> Session:
        factory = self._session_factory or db_module.SessionLocal
        return factory()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="zerospam-log")
            return self._executor

    def write(self, event: "VisitorEvent", decision: "Decision") -> bool:
        try:
            with self._session() as db:
                append_log_entry(db, event, decision)
        except (StoreWriteError, SQLAlchemyError) as exc:
            record_log_write_failure()
            logger.warning(
                "event_log.write_failed",
                extra={"visitor_ip": event.ip, "blocked": decision.blocked, "error": str(exc)},
            )
            return False
        return True

    def submit(self, event: "VisitorEvent", decision: "Decision") -> Future | None:
        if not self._async:
            self.write(event, decision)
            return None
        with self._lock:
            backlog = len(self._pending)
        if backlog >= self._max_pending:
            record_log_write_failure()
            logger.warning(
                "event_log.dropped",
                extra={"visitor_ip": event.ip, "blocked": decision.blocked, "pending": backlog},
            )
            return None
        future = self._get_executor().submit(self.write, event, decision)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._discard)
        return future

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def flush(self, timeout: float | None = None) -> None:
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)


_WRITER: EventLogWriter | None = None


def get_event_log_writer() -> EventLogWriter:
    global _WRITER
    if _WRITER is None:
        _WRITER = EventLogWriter()
    return _WRITER


def reset_event_log_writer() -> None:
    global _WRITER
    if _WRITER is not None:
        _WRITER.shutdown()
    _WRITER = None
