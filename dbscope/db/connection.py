"""Connection session management.

The session manager owns the table of live sessions: opaque UUID4 ids mapped
to backend handles. Adapters stay stateless; every session-level operation
looks the session up, resolves its adapter through the registry and passes
the handle down.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from threading import Event, Lock
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

from dbscope.config.models import ConnectionConfig, DBScopeConfig, SessionSettings
from dbscope.db.base import BaseAdapter
from dbscope.db.errors import error_message
from dbscope.db.history import HistoryKind, HistoryRecord, HistoryRecorder, HistorySink, create_history_recorder
from dbscope.db.models import (
    CollectionInfo,
    ConnectionResult,
    DatabaseInfo,
    IndexInfo,
    QueryRequest,
    QueryResult,
    SchemaInfo,
    SessionInfo,
    SystemInfo,
    TestResult,
)
from dbscope.db.query_pipeline import QueryPipeline
from dbscope.db.registry import AdapterRegistry, create_default_registry, normalize_backend_type
from dbscope.exceptions import (
    BackendConnectionError,
    DBScopeError,
    SessionClosedError,
    SessionNotFoundError,
    UnsupportedOperationError,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _build_request(request: Union[QueryRequest, Dict[str, Any], str]) -> QueryRequest:
    if isinstance(request, QueryRequest):
        return request
    if isinstance(request, str):
        return QueryRequest(text=request)
    if isinstance(request, dict):
        return QueryRequest.from_dict(request)
    raise TypeError(f"Expected a query string, mapping or QueryRequest, got {type(request).__name__}")


@dataclass
class ConnectionSession:
    """A live session: id, backend type, handle and usage timestamps."""
    session_id: str
    backend_type: str
    handle: Any
    created_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime = field(default_factory=_utcnow)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False, compare=False)
    _active_calls: int = field(default=0, init=False, repr=False, compare=False)

    def touch(self, now: Optional[datetime] = None) -> None:
        """Record a successful use of the session."""
        with self._lock:
            self.last_used_at = now or _utcnow()

    @property
    def in_use(self) -> bool:
        """True while an operation is running on the handle; such sessions are never swept."""
        with self._lock:
            return self._active_calls > 0

    def acquire(self) -> None:
        with self._lock:
            self._active_calls += 1

    def release(self) -> None:
        with self._lock:
            self._active_calls = max(0, self._active_calls - 1)

    def idle_for(self, now: Optional[datetime] = None) -> timedelta:
        with self._lock:
            return (now or _utcnow()) - self.last_used_at

    def info(self) -> SessionInfo:
        with self._lock:
            last_used_at = self.last_used_at
        return SessionInfo(
            session_id=self.session_id,
            backend_type=self.backend_type,
            created_at=self.created_at,
            last_used_at=last_used_at,
        )


class SessionManager:
    """Maps session ids to backend connections and dispatches operations.

    Only insertion into and removal from the session table is serialized.
    Lookups and adapter calls hold no shared lock, so operations on different
    sessions run in parallel; concurrent queries on one session rely on the
    driver's own thread safety.
    """

    def __init__(
        self,
        registry: AdapterRegistry,
        pipeline: Optional[QueryPipeline] = None,
        recorder: Optional[HistoryRecorder] = None,
        settings: Optional[SessionSettings] = None,
    ) -> None:
        """Initialize the session manager.

        Args:
            registry: Adapter registry used to resolve backend types.
            pipeline: Query pipeline; a default one is built when omitted.
            recorder: History recorder receiving connect and disconnect records.
            settings: Idle timeout and tombstone settings.
        """
        self.registry = registry
        self.recorder = recorder
        self.pipeline = pipeline or QueryPipeline(recorder=recorder)
        self.settings = settings or SessionSettings()
        self._sessions: Dict[str, ConnectionSession] = {}
        # Destroyed ids, oldest first, mapped to why they were destroyed
        self._tombstones: "OrderedDict[str, str]" = OrderedDict()
        self._lock = Lock()
        self._sweeper: Optional[IdleSessionSweeper] = None

    # Session lifecycle

    def connect(self, backend_type: str, config: ConnectionConfig) -> ConnectionResult:
        """Open a backend connection and register it under a new session id.

        Raises:
            AdapterNotFoundError: If no adapter handles ``backend_type``.
            BackendConnectionError: If the backend connection fails.
        """
        adapter = self.registry.get(backend_type)
        start_time = time.perf_counter()
        try:
            handle = adapter.connect(config)
        except DBScopeError:
            raise
        except Exception as e:
            kind = adapter.classify_error(e)
            raise BackendConnectionError(
                f"{kind.value}: Failed to connect to {adapter.display_name}: {error_message(e)}",
                backend_type=adapter.backend_type,
                error_kind=kind.value,
            ) from e
        execution_time_ms = round((time.perf_counter() - start_time) * 1000, 2)

        with self._lock:
            session_id = str(uuid.uuid4())
            while session_id in self._sessions or session_id in self._tombstones:
                session_id = str(uuid.uuid4())
            self._sessions[session_id] = ConnectionSession(session_id, adapter.backend_type, handle)

        logger.info(f"Opened session {session_id} to {adapter.display_name}")
        self._record(HistoryKind.CONNECT, session_id, adapter.backend_type, execution_time_ms, {
            'host': config.host,
            'port': config.port,
            'keyspace': config.keyspace,
            'database': config.database,
        })
        return ConnectionResult(
            connection_id=session_id,
            status='connected',
            message=f"Successfully connected to {adapter.display_name} database",
            execution_time_ms=execution_time_ms,
        )

    def disconnect(self, session_id: str) -> None:
        """Close a session. The id stays unusable afterwards.

        Raises:
            SessionNotFoundError: If the id is unknown or already closed.
        """
        session = self._remove(session_id, reason='closed')
        self._close_handle(session)
        self._record(HistoryKind.DISCONNECT, session_id, session.backend_type)

    def test_connection(self, backend_type: str, config: ConnectionConfig) -> TestResult:
        """Probe a backend without registering a session."""
        return self.registry.get(backend_type).test_connection(config)

    def get_session(self, session_id: str) -> ConnectionSession:
        """Look up a live session.

        Raises:
            SessionClosedError: If the session was disconnected or expired.
            SessionNotFoundError: If the id was never issued.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        reason = self._tombstones.get(session_id)
        if reason is not None:
            raise SessionClosedError(session_id, reason)
        raise SessionNotFoundError(session_id)

    def list_sessions(self) -> List[SessionInfo]:
        return [session.info() for session in list(self._sessions.values())]

    def get_session_info(self, session_id: str) -> SessionInfo:
        return self.get_session(session_id).info()

    # Schema operations

    def list_databases(self, session_id: str) -> List[DatabaseInfo]:
        return self._dispatch(session_id, lambda adapter, session: adapter.list_databases(session.handle))

    def list_collections(self, session_id: str, database: str) -> List[CollectionInfo]:
        return self._dispatch(
            session_id, lambda adapter, session: adapter.list_collections(session.handle, database)
        )

    def get_schema(self, session_id: str, database: str, collection: str) -> SchemaInfo:
        return self._dispatch(
            session_id, lambda adapter, session: adapter.get_schema(session.handle, database, collection)
        )

    def list_indexes(self, session_id: str, database: str, collection: str) -> List[IndexInfo]:
        """Secondary indexes of a collection.

        Raises:
            UnsupportedOperationError: If the backend does not support indexes.
        """
        def call(adapter: BaseAdapter, session: ConnectionSession) -> List[IndexInfo]:
            if not adapter.capabilities.supports_indexes:
                raise UnsupportedOperationError('list_indexes', adapter.backend_type)
            return adapter.list_indexes(session.handle, database, collection)

        return self._dispatch(session_id, call)

    def get_system_info(self, session_id: str) -> SystemInfo:
        return self._dispatch(session_id, lambda adapter, session: adapter.get_system_info(session.handle))

    # Query operations

    def execute_query(self, session_id: str, request: Union[QueryRequest, Dict[str, Any], str]) -> QueryResult:
        """Run one page of a query. Query failures, malformed requests included, are returned, not raised.

        Raises:
            SessionNotFoundError: If the session id is unknown or closed.
        """
        def call(adapter: BaseAdapter, session: ConnectionSession) -> QueryResult:
            try:
                query = _build_request(request)
            except Exception as e:
                logger.debug(f"Rejected malformed query request on session {session.session_id}: {e}")
                return self.pipeline.reject(adapter, session, None, f"Invalid query request: {error_message(e)}")
            return self.pipeline.execute(adapter, session, query)

        return self._dispatch(session_id, call)

    def execute_aggregation(self, session_id: str, pipeline: Any, page_size: Optional[int] = None) -> QueryResult:
        """Run an aggregation pipeline.

        Raises:
            UnsupportedOperationError: If the backend does not support aggregation.
        """
        def call(adapter: BaseAdapter, session: ConnectionSession) -> QueryResult:
            if not adapter.capabilities.supports_aggregation:
                raise UnsupportedOperationError('execute_aggregation', adapter.backend_type)
            return self.pipeline.execute_aggregation(adapter, session, pipeline, page_size)

        return self._dispatch(session_id, call)

    # Idle policy

    def sweep_idle(self, max_idle: Union[float, timedelta, None] = None, now: Optional[datetime] = None) -> List[str]:
        """Close sessions unused for longer than ``max_idle`` seconds.

        Swept ids raise :class:`SessionClosedError` with reason ``expired``.

        Returns:
            Ids of the sessions that were closed.
        """
        if max_idle is None:
            max_idle = self.settings.idle_timeout
        if max_idle is None:
            return []
        if not isinstance(max_idle, timedelta):
            max_idle = timedelta(seconds=max_idle)
        now = now or _utcnow()

        expired = [
            s.session_id for s in list(self._sessions.values())
            if not s.in_use and s.idle_for(now) > max_idle
        ]
        swept = []
        for session_id in expired:
            session = self._sessions.get(session_id)
            if session is not None and session.in_use:
                continue  # picked up by an operation since the scan
            try:
                session = self._remove(session_id, reason='expired')
            except SessionNotFoundError:
                continue  # closed concurrently
            self._close_handle(session)
            self._record(HistoryKind.DISCONNECT, session_id, session.backend_type, details={'reason': 'expired'})
            swept.append(session_id)

        if swept:
            logger.info(f"Swept {len(swept)} idle session(s)")
        return swept

    def start_sweeper(self) -> None:
        """Start the idle sweeper thread if an idle timeout is configured."""
        if self.settings.idle_timeout is None or self._sweeper is not None:
            return
        self._sweeper = IdleSessionSweeper(self, self.settings.sweep_interval)
        self._sweeper.start()

    def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()
            self._sweeper = None

    def close_all(self) -> None:
        """Close every session, stop the sweeper and drain the history recorder."""
        self.stop_sweeper()
        for session_id in list(self._sessions):
            try:
                self.disconnect(session_id)
            except SessionNotFoundError:
                continue
        if self.recorder is not None:
            self.recorder.stop()
        logger.info("All sessions closed")

    def get_status(self) -> Dict[str, Any]:
        """Health summary of the manager."""
        sessions_by_backend: Dict[str, int] = {}
        for info in self.list_sessions():
            sessions_by_backend[info.backend_type] = sessions_by_backend.get(info.backend_type, 0) + 1

        status = {
            'registered_backends': self.registry.available_types(),
            'active_sessions': sum(sessions_by_backend.values()),
            'sessions_by_backend': sessions_by_backend,
            'sweeper_running': self._sweeper is not None and self._sweeper.running,
            'history': None,
        }
        if self.recorder is not None:
            status['history'] = {
                'sink': type(self.recorder.sink).__name__,
                'running': self.recorder.running,
                **vars(self.recorder.stats()),
            }
        return status

    def __enter__(self):
        """Context manager entry."""
        self.start_sweeper()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close_all()

    # Internals

    def _dispatch(self, session_id: str, call: Callable[[BaseAdapter, ConnectionSession], T]) -> T:
        session = self.get_session(session_id)
        adapter = self.registry.get(session.backend_type)
        session.acquire()
        try:
            result = call(adapter, session)
        finally:
            session.release()
        session.touch()
        return result

    def _remove(self, session_id: str, reason: str) -> ConnectionSession:
        with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                # Raises the closed or not-found error
                self.get_session(session_id)
            self._tombstones[session_id] = reason
            while len(self._tombstones) > self.settings.tombstone_limit:
                self._tombstones.popitem(last=False)
        return session

    def _close_handle(self, session: ConnectionSession) -> None:
        try:
            self.registry.get(session.backend_type).close(session.handle)
        except Exception as e:
            logger.warning(f"Error closing session {session.session_id}: {e}")
        else:
            logger.info(f"Closed session {session.session_id}")

    def _record(
        self,
        kind: HistoryKind,
        session_id: str,
        backend_type: str,
        execution_time_ms: Optional[float] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self.recorder is None:
            return
        self.recorder.submit(HistoryRecord(
            kind=kind,
            session_id=session_id,
            backend_type=normalize_backend_type(backend_type),
            status='success',
            execution_time_ms=execution_time_ms,
            details={k: v for k, v in (details or {}).items() if v is not None},
        ))


class IdleSessionSweeper:
    """Periodically closes idle sessions from a daemon thread."""

    def __init__(self, manager: SessionManager, interval: float = 60.0):
        self.manager = manager
        self.interval = interval
        self._thread: Optional[threading.Thread] = None
        self._stop_event = Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweeper thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._sweep_loop, daemon=True, name="IdleSessionSweeper")
        self._thread.start()
        logger.info(f"Idle session sweeper started (every {self.interval}s)")

    def stop(self) -> None:
        """Stop the sweeper thread."""
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)
        self._thread = None
        logger.info("Idle session sweeper stopped")

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.manager.sweep_idle()
            except Exception as e:
                logger.error(f"Error sweeping idle sessions: {e}")


def create_session_manager(
    config: Optional[DBScopeConfig] = None,
    registry: Optional[AdapterRegistry] = None,
    history_sink: Optional[HistorySink] = None,
) -> SessionManager:
    """Wire a registry, history recorder, pipeline and session manager from configuration."""
    config = config or DBScopeConfig()
    registry = registry or create_default_registry(config.queries)
    recorder = create_history_recorder(config.history, sink=history_sink)
    pipeline = QueryPipeline(config.queries, recorder)
    return SessionManager(registry, pipeline=pipeline, recorder=recorder, settings=config.sessions)
