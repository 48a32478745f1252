"""Append-only audit history: records, sinks and the background recorder.

History writes never sit on the query path. The session manager and the
query pipeline hand records to a :class:`HistoryRecorder`, which queues them
and writes them to a :class:`HistorySink` from its own worker thread with a
bounded number of retries. A failing or slow sink is logged and counted, and
never reaches the caller.
"""

import json
import logging
import queue
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from threading import Event, Lock
from typing import Any, Deque, Dict, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from dbscope.config.models import HistorySettings
from dbscope.exceptions import AuditLoggingError

logger = logging.getLogger(__name__)


class HistoryKind(str, Enum):
    """What a history record describes."""
    QUERY = "query"
    CONNECT = "connect"
    DISCONNECT = "disconnect"


@dataclass(frozen=True)
class HistoryRecord:
    """An immutable audit entry tied to a session and backend type."""
    kind: HistoryKind
    session_id: str
    backend_type: str
    status: str
    query_language: Optional[str] = None
    query_text: Optional[str] = None
    execution_time_ms: Optional[float] = None
    row_count: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    record_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['kind'] = self.kind.value
        data['created_at'] = self.created_at.isoformat()
        return data


class HistorySink(ABC):
    """Destination for history records."""

    @abstractmethod
    def append(self, record: HistoryRecord) -> None:
        """Persist one record.

        Raises:
            AuditLoggingError: If the record cannot be written.
        """

    def recent(self, session_id: str, limit: int = 100) -> List[HistoryRecord]:
        """Latest records for a session, newest first."""
        return []

    def close(self) -> None:
        """Release sink resources."""


class NullHistorySink(HistorySink):
    """Discards every record."""

    def append(self, record: HistoryRecord) -> None:
        pass


class InMemoryHistorySink(HistorySink):
    """Keeps the most recent records in a bounded deque."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: Deque[HistoryRecord] = deque(maxlen=max_records)
        self._lock = Lock()

    def append(self, record: HistoryRecord) -> None:
        with self._lock:
            self._records.append(record)

    def records(self) -> List[HistoryRecord]:
        """All retained records, oldest first."""
        with self._lock:
            return list(self._records)

    def recent(self, session_id: str, limit: int = 100) -> List[HistoryRecord]:
        with self._lock:
            matching = [r for r in self._records if r.session_id == session_id]
        return list(reversed(matching))[:limit]


class SQLAlchemyHistorySink(HistorySink):
    """Writes records to ``query_history`` and ``transaction_log`` tables."""

    def __init__(self, url: str, engine: Optional[Engine] = None) -> None:
        """Initialize the sink and create its tables if missing.

        Args:
            url: SQLAlchemy database URL.
            engine: Pre-built engine, takes precedence over ``url``.

        Raises:
            AuditLoggingError: If the engine or the tables cannot be created.
        """
        self.metadata = MetaData()
        self.query_history = Table(
            'query_history', self.metadata,
            Column('id', String(36), primary_key=True),
            Column('connection_id', String(36), nullable=False, index=True),
            Column('database_type', String(32), nullable=False),
            Column('query_language', String(16)),
            Column('query', Text, nullable=False),
            Column('status', String(16), nullable=False),
            Column('execution_time', Float),
            Column('row_count', Integer),
            Column('error', Text),
            Column('error_kind', String(32)),
            Column('created_at', DateTime(timezone=True), nullable=False),
        )
        self.transaction_log = Table(
            'transaction_log', self.metadata,
            Column('id', String(36), primary_key=True),
            Column('connection_id', String(36), nullable=False, index=True),
            Column('database_type', String(32), nullable=False),
            Column('operation', String(16), nullable=False),
            Column('status', String(16), nullable=False),
            Column('details', Text),
            Column('execution_time', Float),
            Column('created_at', DateTime(timezone=True), nullable=False),
        )

        try:
            if engine is None:
                database_url = make_url(url)
                if database_url.get_backend_name() == 'sqlite' and database_url.database not in (None, '', ':memory:'):
                    Path(database_url.database).parent.mkdir(parents=True, exist_ok=True)
                engine = create_engine(database_url, pool_pre_ping=True)
            self._engine = engine
            self.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise AuditLoggingError(f"Failed to initialize history store: {e}") from e

    def append(self, record: HistoryRecord) -> None:
        if record.kind == HistoryKind.QUERY:
            statement = self.query_history.insert().values(
                id=record.record_id,
                connection_id=record.session_id,
                database_type=record.backend_type,
                query_language=record.query_language,
                query=record.query_text or '',
                status=record.status,
                execution_time=record.execution_time_ms,
                row_count=record.row_count,
                error=record.error,
                error_kind=record.error_kind,
                created_at=record.created_at,
            )
        else:
            statement = self.transaction_log.insert().values(
                id=record.record_id,
                connection_id=record.session_id,
                database_type=record.backend_type,
                operation=record.kind.value.upper(),
                status=record.status,
                details=json.dumps(record.details, default=str) if record.details else None,
                execution_time=record.execution_time_ms,
                created_at=record.created_at,
            )

        try:
            with self._engine.begin() as conn:
                conn.execute(statement)
        except SQLAlchemyError as e:
            raise AuditLoggingError(f"Failed to write history record {record.record_id}: {e}") from e

    def recent(self, session_id: str, limit: int = 100) -> List[HistoryRecord]:
        queries = (
            select(self.query_history)
            .where(self.query_history.c.connection_id == session_id)
            .order_by(self.query_history.c.created_at.desc())
            .limit(limit)
        )
        operations = (
            select(self.transaction_log)
            .where(self.transaction_log.c.connection_id == session_id)
            .order_by(self.transaction_log.c.created_at.desc())
            .limit(limit)
        )

        try:
            with self._engine.connect() as conn:
                records = [self._query_row_to_record(row) for row in conn.execute(queries).mappings()]
                records.extend(self._log_row_to_record(row) for row in conn.execute(operations).mappings())
        except SQLAlchemyError as e:
            raise AuditLoggingError(f"Failed to read history for {session_id}: {e}") from e

        records.sort(key=lambda record: record.created_at, reverse=True)
        return records[:limit]

    @staticmethod
    def _aware(value: datetime) -> datetime:
        # SQLite hands back naive datetimes
        return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value

    def _query_row_to_record(self, row: Any) -> HistoryRecord:
        return HistoryRecord(
            kind=HistoryKind.QUERY,
            session_id=row['connection_id'],
            backend_type=row['database_type'],
            status=row['status'],
            query_language=row['query_language'],
            query_text=row['query'],
            execution_time_ms=row['execution_time'],
            row_count=row['row_count'],
            error=row['error'],
            error_kind=row['error_kind'],
            record_id=row['id'],
            created_at=self._aware(row['created_at']),
        )

    def _log_row_to_record(self, row: Any) -> HistoryRecord:
        return HistoryRecord(
            kind=HistoryKind(row['operation'].lower()),
            session_id=row['connection_id'],
            backend_type=row['database_type'],
            status=row['status'],
            execution_time_ms=row['execution_time'],
            details=json.loads(row['details']) if row['details'] else {},
            record_id=row['id'],
            created_at=self._aware(row['created_at']),
        )

    def close(self) -> None:
        self._engine.dispose()


@dataclass
class RecorderStats:
    """Counters exposed to operators."""
    submitted: int = 0
    written: int = 0
    retried: int = 0
    failed: int = 0
    dropped: int = 0


class HistoryRecorder:
    """Writes history records from a background thread.

    ``submit`` never blocks and never raises. Records that cannot be queued
    (queue full) or written (after ``retry_attempts`` retries) are dropped,
    counted in :meth:`stats` and logged.
    """

    _STOP = object()

    def __init__(
        self,
        sink: HistorySink,
        queue_size: int = 1000,
        retry_attempts: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        self.sink = sink
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=queue_size)
        self._stats = RecorderStats()
        self._stats_lock = Lock()
        self._state_lock = Lock()
        self._stop_event = Event()
        self._worker: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        """Start the writer thread (idempotent)."""
        with self._state_lock:
            if self.running:
                return
            self._stop_event.clear()
            self._worker = threading.Thread(
                target=self._run,
                daemon=True,
                name="HistoryRecorder",
            )
            self._worker.start()
        logger.info(f"History recorder started ({type(self.sink).__name__})")

    def stop(self, timeout: float = 5.0) -> None:
        """Drain pending records, stop the writer thread and close the sink.

        A later :meth:`submit` restarts the writer; sinks reopen their
        resources on demand.
        """
        with self._state_lock:
            worker = self._worker
        if worker is not None:
            self._stop_worker(worker, timeout)
        try:
            self.sink.close()
        except Exception as e:
            logger.warning(f"Error closing history sink {type(self.sink).__name__}: {e}")

    def _stop_worker(self, worker: threading.Thread, timeout: float) -> None:
        if not self.flush(timeout):
            logger.warning(f"History recorder stopped with {self._queue.qsize()} record(s) unwritten")
        try:
            self._queue.put(self._STOP, timeout=timeout)
        except queue.Full:
            # Worker is stuck; it also polls the stop event
            self._stop_event.set()
        worker.join(timeout=timeout)
        with self._state_lock:
            self._worker = None
        logger.info("History recorder stopped")

    def submit(self, record: HistoryRecord) -> None:
        """Queue a record for writing without blocking the caller."""
        if not self.running:
            self.start()
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._bump('dropped')
            logger.warning(
                f"History queue full, dropping {record.kind.value} record for session {record.session_id}"
            )
            return
        self._bump('submitted')

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued record has been handled.

        Returns:
            True if the queue drained within ``timeout``.
        """
        if not self.running:
            return self._queue.unfinished_tasks == 0
        finished = threading.Event()

        def wait_for_queue():
            self._queue.join()
            finished.set()

        threading.Thread(target=wait_for_queue, daemon=True, name="HistoryFlush").start()
        return finished.wait(timeout)

    def stats(self) -> RecorderStats:
        """Snapshot of the recorder counters."""
        with self._stats_lock:
            return RecorderStats(**asdict(self._stats))

    def _bump(self, counter: str, amount: int = 1) -> None:
        with self._stats_lock:
            setattr(self._stats, counter, getattr(self._stats, counter) + amount)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                item = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                if item is self._STOP:
                    return
                self._write(item)
            finally:
                self._queue.task_done()

    def _write(self, record: HistoryRecord) -> None:
        attempts = self.retry_attempts + 1
        for attempt in range(1, attempts + 1):
            try:
                self.sink.append(record)
                self._bump('written')
                return
            except Exception as e:
                if attempt == attempts:
                    logger.error(
                        f"Failed to record {record.kind.value} history for session "
                        f"{record.session_id} after {attempts} attempts: {e}"
                    )
                    break
                self._bump('retried')
                logger.debug(f"History write attempt {attempt}/{attempts} failed for {record.record_id}: {e}")
                self._stop_event.wait(self.retry_delay)
        self._bump('failed')


def create_history_sink(settings: HistorySettings) -> HistorySink:
    """Build the sink selected by ``history.backend``."""
    if not settings.enabled or settings.backend == "none":
        return NullHistorySink()
    if settings.backend == "sql":
        return SQLAlchemyHistorySink(settings.url)
    return InMemoryHistorySink(settings.max_records)


def create_history_recorder(settings: HistorySettings, sink: Optional[HistorySink] = None) -> HistoryRecorder:
    """Build a recorder around ``sink`` or the configured sink."""
    return HistoryRecorder(
        sink if sink is not None else create_history_sink(settings),
        queue_size=settings.queue_size,
        retry_attempts=settings.retry_attempts,
        retry_delay=settings.retry_delay,
    )
