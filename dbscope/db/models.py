"""Data model shared by adapters, the session manager and the query pipeline."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import pandas as pd


class QueryLanguage(str, Enum):
    """Native query language of a backend."""
    CQL = "cql"            # Cassandra Query Language
    MQL = "mql"            # MongoDB Query Language
    PARTIQL = "partiql"    # AWS DynamoDB
    REDIS = "redis"        # Redis commands
    N1QL = "n1ql"          # Couchbase


class SchemaType(str, Enum):
    """How strictly a backend enforces a schema."""
    SCHEMALESS = "schemaless"
    SCHEMA_OPTIONAL = "schema-optional"
    SCHEMA_REQUIRED = "schema-required"


class QueryErrorKind(str, Enum):
    """Classification of a failed query."""
    TIMEOUT = "Timeout"
    CONNECTION_REFUSED = "ConnectionRefused"
    AUTHENTICATION_FAILED = "AuthenticationFailed"
    QUERY_SYNTAX_ERROR = "QuerySyntaxError"
    DISALLOWED_OPERATION = "DisallowedOperation"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class Capabilities:
    """Declarative feature flags of an adapter."""
    supports_keyspaces: bool
    supports_indexes: bool
    supports_aggregation: bool
    supports_transactions: bool
    query_language: QueryLanguage
    schema_type: SchemaType

    def to_dict(self) -> Dict[str, Any]:
        return {
            'supports_keyspaces': self.supports_keyspaces,
            'supports_indexes': self.supports_indexes,
            'supports_aggregation': self.supports_aggregation,
            'supports_transactions': self.supports_transactions,
            'query_language': self.query_language.value,
            'schema_type': self.schema_type.value,
        }


@dataclass(frozen=True)
class AdapterDescriptor:
    """Discovery metadata for a registered adapter."""
    backend_type: str
    display_name: str
    icon: str
    capabilities: Capabilities

    def to_dict(self) -> Dict[str, Any]:
        return {
            'backend_type': self.backend_type,
            'display_name': self.display_name,
            'icon': self.icon,
            'capabilities': self.capabilities.to_dict(),
        }


@dataclass
class ConnectionResult:
    """Outcome of a successful connect."""
    connection_id: str
    status: str
    message: str
    execution_time_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class TestResult:
    """Outcome of a connection probe. Never raised, always returned."""
    __test__ = False

    success: bool
    status: str
    message: str
    execution_time_ms: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DatabaseInfo:
    """A top-level container (keyspace, database)."""
    name: str
    collections_count: Optional[int] = None
    size: Optional[str] = None


@dataclass
class CollectionInfo:
    """A collection or table inside a container."""
    name: str
    type: Optional[str] = None
    documents_count: Optional[int] = None
    columns_count: Optional[int] = None


@dataclass
class ColumnInfo:
    """A column definition with its canonical type."""
    name: str
    type: str
    native_type: Optional[str] = None
    primary_key: bool = False
    partition_key: bool = False
    clustering_order: Optional[str] = None
    position: Optional[int] = None
    nullable: Optional[bool] = None


@dataclass
class IndexInfo:
    """A secondary index and the column it targets."""
    name: str
    column: str
    kind: Optional[str] = None
    type: Optional[str] = None


@dataclass
class SchemaInfo:
    """Columns and indexes of one collection."""
    columns: List[ColumnInfo] = field(default_factory=list)
    indexes: List[IndexInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SystemInfo:
    """Backend version and topology summary."""
    version: Optional[str]
    cluster_name: Optional[str] = None
    nodes_count: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class QueryRequest:
    """A query to run against a session."""
    text: str
    page_size: Optional[int] = None
    page_state: Optional[str] = None
    parameters: List[Any] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryRequest":
        """Build a request from the external ``{text, pageSize, pageState, parameters}`` shape."""
        return cls(
            text=data.get('text', data.get('query', '')),
            page_size=data.get('page_size', data.get('pageSize')),
            page_state=data.get('page_state', data.get('pageState')),
            parameters=list(data.get('parameters') or []),
        )


@dataclass
class QueryColumn:
    """A result column with its canonical type."""
    name: str
    type: str


@dataclass
class QueryPage:
    """One page of raw rows as returned by an adapter, before normalization.

    ``columns`` pairs each column name with the backend-native type object.
    """
    rows: List[Dict[str, Any]]
    columns: List[Any] = field(default_factory=list)
    next_page_state: Optional[str] = None


@dataclass
class QueryResult:
    """Container for a query outcome.

    Failures are data: ``success`` is False, ``rows`` is empty and ``error``
    carries the classified message.
    """
    success: bool
    rows: List[Dict[str, Any]] = field(default_factory=list)
    columns: List[QueryColumn] = field(default_factory=list)
    page_state: Optional[str] = None
    execution_time_ms: float = 0.0
    row_count: int = 0
    error: Optional[str] = None
    error_kind: Optional[QueryErrorKind] = None

    @classmethod
    def failure(cls, kind: QueryErrorKind, message: str, execution_time_ms: float = 0.0) -> "QueryResult":
        """Build a failed result with a ``"<Kind>: <message>"`` error text."""
        return cls(
            success=False,
            execution_time_ms=execution_time_ms,
            error=f"{kind.value}: {message or 'Unknown query error'}",
            error_kind=kind,
        )

    @property
    def is_empty(self) -> bool:
        """Check if result is empty."""
        return not self.rows

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        result = {
            'success': self.success,
            'results': self.rows,
            'columns': [{'name': col.name, 'type': col.type} for col in self.columns],
            'execution_time_ms': self.execution_time_ms,
            'row_count': self.row_count,
        }
        if self.page_state is not None:
            result['page_state'] = self.page_state
        if self.error is not None:
            result['error'] = self.error
            result['error_kind'] = self.error_kind.value if self.error_kind else None
        return result

    def to_dataframe(self) -> pd.DataFrame:
        """Rows as a DataFrame, with columns in result order."""
        names = [col.name for col in self.columns]
        if not self.rows:
            return pd.DataFrame(columns=names)
        return pd.DataFrame(self.rows, columns=names or None)


@dataclass(frozen=True)
class SessionInfo:
    """Handle-free snapshot of a live session."""
    session_id: str
    backend_type: str
    created_at: datetime
    last_used_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'session_id': self.session_id,
            'backend_type': self.backend_type,
            'created_at': self.created_at.isoformat(),
            'last_used_at': self.last_used_at.isoformat(),
        }
