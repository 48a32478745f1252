"""Backend adapters, session management and query execution."""

from dbscope.db.base import BaseAdapter
from dbscope.db.models import (
    Capabilities,
    AdapterDescriptor,
    QueryErrorKind,
    QueryLanguage,
    QueryRequest,
    QueryResult,
    SchemaType,
)
from dbscope.db.registry import AdapterRegistry, create_default_registry
from dbscope.db.connection import (
    ConnectionSession,
    IdleSessionSweeper,
    SessionManager,
    create_session_manager,
)
from dbscope.db.query_pipeline import QueryPipeline
from dbscope.db.adapters import (
    CassandraAdapter,
    ScyllaDBAdapter,
)

__all__ = [
    # Contract
    "BaseAdapter",
    "Capabilities",
    "AdapterDescriptor",
    "QueryErrorKind",
    "QueryLanguage",
    "QueryRequest",
    "QueryResult",
    "SchemaType",
    # Registry and sessions
    "AdapterRegistry",
    "create_default_registry",
    "ConnectionSession",
    "IdleSessionSweeper",
    "SessionManager",
    "create_session_manager",
    "QueryPipeline",
    # Backend adapters
    "CassandraAdapter",
    "ScyllaDBAdapter",
]
