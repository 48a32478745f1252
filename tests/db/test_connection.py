"""Tests for the connection session manager."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from dbscope.config.models import ConnectionConfig, DBScopeConfig
from dbscope.db.connection import IdleSessionSweeper, SessionManager, create_session_manager
from dbscope.db.history import HistoryKind, InMemoryHistorySink
from dbscope.db.models import QueryErrorKind, QueryRequest
from dbscope.exceptions import (
    AdapterNotFoundError,
    BackendConnectionError,
    BackendError,
    SessionClosedError,
    SessionNotFoundError,
    UnsupportedOperationError,
)


class TestConnect:
    def test_connect_returns_uuid_session_id(self, manager, memory_adapter):
        result = manager.connect('memory', ConnectionConfig(host='localhost'))

        assert result.status == 'connected'
        assert uuid.UUID(result.connection_id).version == 4
        assert result.execution_time_ms >= 0
        assert len(memory_adapter.handles) == 1

    def test_backend_type_is_case_insensitive(self, manager):
        result = manager.connect('MEMORY', ConnectionConfig(host='localhost'))
        assert manager.get_session_info(result.connection_id).backend_type == 'memory'

    def test_ids_are_unique(self, manager):
        ids = {manager.connect('memory', ConnectionConfig()).connection_id for _ in range(20)}
        assert len(ids) == 20

    def test_unknown_backend(self, manager):
        with pytest.raises(AdapterNotFoundError) as exc_info:
            manager.connect('mongodb', ConnectionConfig())
        assert 'Available: memory' in str(exc_info.value)

    def test_driver_failure_is_wrapped_and_classified(self, manager, memory_adapter):
        memory_adapter.connect_error = ConnectionRefusedError("[Errno 111] Connection refused")

        with pytest.raises(BackendConnectionError) as exc_info:
            manager.connect('memory', ConnectionConfig(host='nowhere'))

        assert exc_info.value.error_kind == QueryErrorKind.CONNECTION_REFUSED.value
        assert str(exc_info.value).startswith('ConnectionRefused: ')
        assert manager.list_sessions() == []

    def test_connect_is_audited(self, manager, recorder, history_sink, session_id):
        assert recorder.flush(timeout=5)
        records = history_sink.recent(session_id)
        assert [r.kind for r in records] == [HistoryKind.CONNECT]
        assert records[0].details == {'host': 'localhost'}


class TestSessionLifecycle:
    def test_disconnect_closes_handle(self, manager, memory_adapter, session_id):
        manager.disconnect(session_id)

        assert memory_adapter.handles[0].closed
        assert manager.list_sessions() == []

    def test_reuse_after_disconnect_raises_closed(self, manager, session_id):
        manager.disconnect(session_id)

        with pytest.raises(SessionClosedError) as exc_info:
            manager.list_databases(session_id)
        assert exc_info.value.reason == 'closed'

        with pytest.raises(SessionClosedError):
            manager.disconnect(session_id)

    def test_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError) as exc_info:
            manager.execute_query('does-not-exist', 'SELECT * FROM shop.users')
        assert not isinstance(exc_info.value, SessionClosedError)

    def test_close_failure_is_tolerated(self, manager, memory_adapter, session_id):
        def broken_close(handle):
            raise RuntimeError("socket already closed")

        memory_adapter.close = broken_close
        manager.disconnect(session_id)

        with pytest.raises(SessionClosedError):
            manager.get_session(session_id)

    def test_disconnect_is_audited(self, manager, recorder, history_sink, session_id):
        manager.disconnect(session_id)

        assert recorder.flush(timeout=5)
        kinds = [r.kind for r in history_sink.recent(session_id)]
        assert set(kinds) == {HistoryKind.CONNECT, HistoryKind.DISCONNECT}

    def test_tombstones_are_bounded(self, registry, recorder):
        from dbscope.config.models import SessionSettings

        manager = SessionManager(registry, recorder=recorder, settings=SessionSettings(tombstone_limit=2))
        ids = [manager.connect('memory', ConnectionConfig()).connection_id for _ in range(3)]
        for session_id in ids:
            manager.disconnect(session_id)

        with pytest.raises(SessionNotFoundError) as exc_info:
            manager.get_session(ids[0])
        assert not isinstance(exc_info.value, SessionClosedError)
        with pytest.raises(SessionClosedError):
            manager.get_session(ids[2])

    def test_test_connection_does_not_register(self, manager, memory_adapter):
        result = manager.test_connection('memory', ConnectionConfig(host='localhost'))

        assert result.success
        assert result.status == 'success'
        assert manager.list_sessions() == []
        assert memory_adapter.handles[0].closed

    def test_test_connection_failure_is_returned(self, manager, memory_adapter):
        memory_adapter.connect_error = TimeoutError("timed out")

        result = manager.test_connection('memory', ConnectionConfig())

        assert not result.success
        assert result.status == 'failed'
        assert 'timed out' in result.message


class TestDispatch:
    def test_operations_bump_last_used(self, manager, session_id):
        before = manager.get_session_info(session_id).last_used_at
        manager.list_databases(session_id)
        after = manager.get_session_info(session_id).last_used_at

        assert after >= before

    def test_failed_operation_does_not_bump_last_used(self, manager, session_id):
        before = manager.get_session_info(session_id).last_used_at

        with pytest.raises(BackendError):
            manager.list_collections(session_id, 'missing')

        assert manager.get_session_info(session_id).last_used_at == before

    def test_list_indexes(self, manager, session_id):
        indexes = manager.list_indexes(session_id, 'shop', 'users')
        assert [(i.name, i.column) for i in indexes] == [('users_name_idx', 'name')]

    def test_list_indexes_requires_capability(self, manager, memory_adapter, session_id):
        memory_adapter.capabilities = type(memory_adapter.capabilities)(
            supports_keyspaces=True,
            supports_indexes=False,
            supports_aggregation=False,
            supports_transactions=False,
            query_language=memory_adapter.capabilities.query_language,
            schema_type=memory_adapter.capabilities.schema_type,
        )

        with pytest.raises(UnsupportedOperationError):
            manager.list_indexes(session_id, 'shop', 'users')

    def test_aggregation_unsupported(self, manager, session_id):
        with pytest.raises(UnsupportedOperationError) as exc_info:
            manager.execute_aggregation(session_id, [{'$match': {}}])
        assert exc_info.value.operation == 'execute_aggregation'

    def test_system_info(self, manager, session_id):
        info = manager.get_system_info(session_id)
        assert info.version == '1.0'
        assert info.nodes_count == 1

    def test_execute_query_accepts_dict_request(self, manager, session_id):
        result = manager.execute_query(session_id, {'text': 'SELECT * FROM shop.users', 'pageSize': 5})

        assert result.success
        assert result.row_count == 5

    def test_missing_parameters_mean_none(self, manager, session_id):
        result = manager.execute_query(
            session_id, QueryRequest(text='SELECT * FROM shop.users', page_size=3, parameters=None)
        )

        assert result.success
        assert result.row_count == 3

    @pytest.mark.parametrize('request_', [
        {'text': 'SELECT * FROM shop.users', 'parameters': 5},
        QueryRequest(text='SELECT * FROM shop.users', parameters=5),
        {'text': 123},
        QueryRequest(text=['SELECT']),
        None,
        42,
    ])
    def test_malformed_request_is_returned_as_failure(self, manager, session_id, request_):
        result = manager.execute_query(session_id, request_)

        assert not result.success
        assert result.error_kind == QueryErrorKind.QUERY_SYNTAX_ERROR
        assert result.error.startswith('QuerySyntaxError: ')
        assert result.rows == []

    def test_malformed_request_is_audited(self, manager, recorder, history_sink, session_id):
        manager.execute_query(session_id, {'text': 123})
        assert recorder.flush(timeout=5)

        queries = [r for r in history_sink.records() if r.kind == HistoryKind.QUERY]
        assert len(queries) == 1
        assert queries[0].status == 'error'

    def test_malformed_request_on_unknown_session_raises(self, manager):
        with pytest.raises(SessionNotFoundError):
            manager.execute_query(str(uuid.uuid4()), {'text': 123})

    def test_sessions_are_isolated(self, manager):
        first = manager.connect('memory', ConnectionConfig(host='a')).connection_id
        second = manager.connect('memory', ConnectionConfig(host='b')).connection_id

        manager.disconnect(first)

        assert manager.execute_query(second, 'SELECT * FROM shop.orders').success

    def test_parallel_queries_on_different_sessions(self, manager):
        ids = [manager.connect('memory', ConnectionConfig()).connection_id for _ in range(8)]
        results = {}

        def run(session_id):
            results[session_id] = manager.execute_query(
                session_id, QueryRequest(text='SELECT * FROM shop.users', page_size=10)
            )

        threads = [threading.Thread(target=run, args=(sid,)) for sid in ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(results) == 8
        assert all(r.success and r.row_count == 10 for r in results.values())


class TestIdlePolicy:
    def test_sweep_idle_expires_old_sessions(self, manager, session_id):
        fresh = manager.connect('memory', ConnectionConfig()).connection_id
        now = datetime.now(timezone.utc) + timedelta(seconds=120)
        manager.get_session(fresh).touch(now)

        swept = manager.sweep_idle(max_idle=60, now=now)

        assert swept == [session_id]
        with pytest.raises(SessionClosedError) as exc_info:
            manager.execute_query(session_id, 'SELECT * FROM shop.users')
        assert exc_info.value.reason == 'expired'
        assert manager.get_session_info(fresh).session_id == fresh

    def test_sweep_skips_session_with_running_operation(self, manager, memory_adapter, session_id):
        later = datetime.now(timezone.utc) + timedelta(seconds=120)
        original = memory_adapter.run_query
        swept_during_query = []

        def slow_query(handle, request):
            swept_during_query.extend(manager.sweep_idle(max_idle=60, now=later))
            return original(handle, request)

        memory_adapter.run_query = slow_query
        result = manager.execute_query(session_id, 'SELECT * FROM shop.orders')

        assert result.success
        assert swept_during_query == []
        assert not memory_adapter.handles[0].closed
        assert not manager.get_session(session_id).in_use

    def test_released_session_can_be_swept(self, manager, session_id):
        session = manager.get_session(session_id)
        later = datetime.now(timezone.utc) + timedelta(seconds=120)

        session.acquire()
        assert manager.sweep_idle(max_idle=60, now=later) == []
        session.release()

        assert manager.sweep_idle(max_idle=60, now=later) == [session_id]

    def test_sweep_uses_configured_timeout(self, manager, session_id):
        assert manager.sweep_idle() == []
        later = datetime.now(timezone.utc) + timedelta(seconds=61)
        assert manager.sweep_idle(now=later) == [session_id]

    def test_sweeper_thread(self, manager, session_id):
        manager.settings.idle_timeout = 1
        manager.get_session(session_id).touch(datetime.now(timezone.utc) - timedelta(seconds=10))
        sweeper = IdleSessionSweeper(manager, interval=0.05)
        sweeper.start()
        try:
            deadline = datetime.now() + timedelta(seconds=5)
            while manager.list_sessions() and datetime.now() < deadline:
                threading.Event().wait(0.05)
        finally:
            sweeper.stop()

        assert manager.list_sessions() == []
        assert not sweeper.running


class TestStatusAndShutdown:
    def test_get_status(self, manager, session_id):
        status = manager.get_status()

        assert status['registered_backends'] == ['memory']
        assert status['active_sessions'] == 1
        assert status['sessions_by_backend'] == {'memory': 1}
        assert status['history']['sink'] == 'InMemoryHistorySink'

    def test_context_manager_closes_everything(self, registry, recorder, memory_adapter):
        with SessionManager(registry, recorder=recorder) as manager:
            session_id = manager.connect('memory', ConnectionConfig()).connection_id

        assert memory_adapter.handles[0].closed
        assert not recorder.running
        with pytest.raises(SessionClosedError):
            manager.get_session(session_id)

    def test_create_session_manager(self, registry):
        sink = InMemoryHistorySink()
        manager = create_session_manager(DBScopeConfig(), registry=registry, history_sink=sink)
        try:
            session_id = manager.connect('memory', ConnectionConfig()).connection_id
            manager.execute_query(session_id, 'SELECT * FROM shop.orders')
            assert manager.recorder.flush(timeout=5)
            assert len(sink.recent(session_id)) == 2
        finally:
            manager.close_all()
