"""Shared fixtures: an in-memory backend adapter and a wired session manager."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pytest

from dbscope.config.models import ConnectionConfig, QuerySettings, SessionSettings
from dbscope.db.adapters.cassandra import CQL_COLLECTION_TYPES, CQL_SCALAR_TYPES
from dbscope.db.base import BaseAdapter
from dbscope.db.connection import SessionManager
from dbscope.db.history import HistoryRecorder, InMemoryHistorySink
from dbscope.db.models import (
    Capabilities,
    ColumnInfo,
    IndexInfo,
    QueryLanguage,
    QueryPage,
    QueryRequest,
    SchemaType,
    SystemInfo,
)
from dbscope.db.query_pipeline import QueryPipeline
from dbscope.db.registry import AdapterRegistry
from dbscope.db.types import TypeNormalizer

SELECT_PATTERN = re.compile(
    r'^\s*SELECT\s+\*\s+FROM\s+(\w+)\.(\w+)(?:\s+LIMIT\s+(\d+))?\s*;?\s*$',
    re.IGNORECASE,
)


@dataclass
class MemoryHandle:
    config: ConnectionConfig
    closed: bool = False


class MemoryAdapter(BaseAdapter):
    """Adapter over Python dicts, speaking a tiny subset of CQL."""

    backend_type = 'memory'
    display_name = 'In-Memory'
    icon = '🧪'
    capabilities = Capabilities(
        supports_keyspaces=True,
        supports_indexes=True,
        supports_aggregation=False,
        supports_transactions=False,
        query_language=QueryLanguage.CQL,
        schema_type=SchemaType.SCHEMA_REQUIRED,
    )
    system_databases = frozenset({'system'})

    def __init__(self, settings: Optional[QuerySettings] = None) -> None:
        super().__init__(settings)
        self.tables: Dict[str, Dict[str, List[Dict[str, Any]]]] = {
            'shop': {
                'users': [{'id': i, 'name': f'user{i}', 'tags': {'a'}} for i in range(1, 251)],
                'orders': [{'id': 1, 'user_id': 1, 'total': 9.5}],
            },
            'analytics': {},
            'system': {'local': [{'key': 'local'}]},
        }
        self.column_types: Dict[tuple, List[tuple]] = {
            ('shop', 'users'): [('id', 'int'), ('name', 'text'), ('tags', 'frozen<set<text>>')],
            ('shop', 'orders'): [('id', 'int'), ('user_id', 'int'), ('total', 'decimal')],
        }
        self.indexes: Dict[tuple, List[Dict[str, Any]]] = {
            ('shop', 'users'): [
                {'index_name': 'users_name_idx', 'column': 'name'},
                {'index_name': 'broken_idx'},
            ],
        }
        self.connect_error: Optional[Exception] = None
        self.query_error: Optional[Exception] = None
        self.count_errors: set = set()
        self.handles: List[MemoryHandle] = []

    def build_type_normalizer(self) -> TypeNormalizer:
        return TypeNormalizer(CQL_SCALAR_TYPES, CQL_COLLECTION_TYPES, wrapper_tags=('frozen',))

    def connect(self, config: ConnectionConfig) -> MemoryHandle:
        if self.connect_error is not None:
            raise self.connect_error
        handle = MemoryHandle(config)
        self.handles.append(handle)
        return handle

    def close(self, handle: MemoryHandle) -> None:
        handle.closed = True

    def fetch_database_names(self, handle: MemoryHandle) -> List[str]:
        return list(self.tables)

    def fetch_collection_names(self, handle: MemoryHandle, database: str) -> List[str]:
        if database not in self.tables:
            raise KeyError(f"Keyspace {database} does not exist")
        return list(self.tables[database])

    def count_collections(self, handle: MemoryHandle, database: str) -> int:
        if database in self.count_errors:
            raise RuntimeError(f"count failed for {database}")
        return super().count_collections(handle, database)

    def fetch_columns(self, handle: MemoryHandle, database: str, collection: str) -> List[ColumnInfo]:
        return [
            ColumnInfo(name=name, type=self.normalize_type(native), native_type=native,
                       primary_key=position == 0, partition_key=position == 0, position=position)
            for position, (name, native) in enumerate(self.column_types.get((database, collection), []))
        ]

    def fetch_indexes(self, handle: MemoryHandle, database: str, collection: str) -> List[Dict[str, Any]]:
        return self.indexes.get((database, collection), [])

    def parse_index(self, raw: Dict[str, Any]) -> Optional[IndexInfo]:
        if 'column' not in raw:
            return None
        return IndexInfo(name=raw['index_name'], column=raw['column'])

    def list_indexes(self, handle: MemoryHandle, database: str, collection: str) -> List[IndexInfo]:
        return self.introspector.list_indexes(handle, database, collection)

    def run_query(self, handle: MemoryHandle, request: QueryRequest) -> QueryPage:
        if self.query_error is not None:
            raise self.query_error
        match = SELECT_PATTERN.match(request.text)
        if not match:
            raise ValueError(f"line 1:0 no viable alternative at input '{request.text}'")
        database, collection, limit = match.groups()
        try:
            rows = self.tables[database][collection]
        except KeyError:
            raise ValueError(f"unconfigured table {collection}") from None
        if limit:
            rows = rows[:int(limit)]

        offset = int(request.page_state or 0)
        page = rows[offset:offset + request.page_size]
        next_offset = offset + len(page)
        return QueryPage(
            rows=[dict(row) for row in page],
            columns=list(self.column_types.get((database, collection), [])),
            next_page_state=str(next_offset) if next_offset < len(rows) else None,
        )

    def get_system_info(self, handle: MemoryHandle) -> SystemInfo:
        return SystemInfo(version='1.0', cluster_name='memory-cluster', nodes_count=1)


@pytest.fixture
def memory_adapter() -> MemoryAdapter:
    return MemoryAdapter()


@pytest.fixture
def registry(memory_adapter: MemoryAdapter) -> AdapterRegistry:
    registry = AdapterRegistry()
    registry.register(memory_adapter)
    return registry


@pytest.fixture
def history_sink() -> InMemoryHistorySink:
    return InMemoryHistorySink(max_records=100)


@pytest.fixture
def recorder(history_sink: InMemoryHistorySink) -> HistoryRecorder:
    recorder = HistoryRecorder(history_sink, queue_size=100, retry_attempts=1, retry_delay=0.01)
    yield recorder
    recorder.stop()


@pytest.fixture
def manager(registry: AdapterRegistry, recorder: HistoryRecorder) -> SessionManager:
    manager = SessionManager(
        registry,
        pipeline=QueryPipeline(QuerySettings(), recorder),
        recorder=recorder,
        settings=SessionSettings(idle_timeout=60, tombstone_limit=100),
    )
    yield manager
    manager.close_all()


@pytest.fixture
def session_id(manager: SessionManager) -> str:
    return manager.connect('memory', ConnectionConfig(host='localhost')).connection_id
