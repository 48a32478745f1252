"""Base database adapter: the contract every backend implements."""

import time
from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, List, Optional

from dbscope.config.models import ConnectionConfig, QuerySettings
from dbscope.db.errors import classify_exception, error_message
from dbscope.db.models import (
    AdapterDescriptor,
    Capabilities,
    CollectionInfo,
    ColumnInfo,
    DatabaseInfo,
    IndexInfo,
    QueryErrorKind,
    QueryLanguage,
    QueryPage,
    QueryRequest,
    SchemaInfo,
    SystemInfo,
    TestResult,
)
from dbscope.db.policy import QueryPolicy, ReadOnlyPolicy
from dbscope.db.schema_introspector import SchemaIntrospector
from dbscope.db.types import TypeNormalizer
from dbscope.exceptions import UnsupportedOperationError


class BaseAdapter(ABC):
    """Base class for backend adapters.

    An adapter is stateless with respect to connections: ``connect`` returns a
    backend handle that the session manager owns, and every other operation
    receives that handle back. Optional operations (``list_indexes``,
    ``run_aggregation``) are gated by :attr:`capabilities` and raise
    :class:`UnsupportedOperationError` unless a subclass implements them.
    """

    backend_type: str
    display_name: str
    icon: str = ""
    capabilities: Capabilities

    # Containers that belong to the backend itself and are never listed
    system_databases: FrozenSet[str] = frozenset()

    # Statement keywords the read-only policy lets through
    read_keywords: FrozenSet[str] = frozenset({"SELECT"})

    def __init__(self, settings: Optional[QuerySettings] = None) -> None:
        """Initialize backend adapter.

        Args:
            settings: Query execution settings (page sizes, timeouts, read-only mode).
        """
        self.settings = settings or QuerySettings()
        self.policy: QueryPolicy = (
            ReadOnlyPolicy(self.read_keywords) if self.settings.read_only else QueryPolicy()
        )
        self.introspector = SchemaIntrospector(self)
        self.type_normalizer = self.build_type_normalizer()

    @property
    def descriptor(self) -> AdapterDescriptor:
        """Discovery metadata for this adapter."""
        return AdapterDescriptor(
            backend_type=self.backend_type,
            display_name=self.display_name,
            icon=self.icon,
            capabilities=self.capabilities,
        )

    @property
    def query_language(self) -> QueryLanguage:
        return self.capabilities.query_language

    # Connection management

    @abstractmethod
    def connect(self, config: ConnectionConfig) -> Any:
        """Open a backend-native connection.

        Returns:
            Backend handle, owned by the caller until passed to :meth:`close`.

        Raises:
            BackendConnectionError: If the backend is unreachable, rejects the
                credentials, or the configuration is incomplete.
        """
        pass

    @abstractmethod
    def close(self, handle: Any) -> None:
        """Release a backend handle."""
        pass

    def test_connection(self, config: ConnectionConfig) -> TestResult:
        """Probe reachability and credentials.

        Opens and immediately closes a connection. Never raises.
        """
        start_time = time.perf_counter()
        try:
            handle = self.connect(config)
            self.close(handle)
        except Exception as e:
            return TestResult(
                success=False,
                status='failed',
                message=error_message(e),
                execution_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
            )

        return TestResult(
            success=True,
            status='success',
            message='Connection test successful',
            execution_time_ms=round((time.perf_counter() - start_time) * 1000, 2),
        )

    # Introspection primitives

    @abstractmethod
    def fetch_database_names(self, handle: Any) -> List[str]:
        """Names of all top-level containers, system ones included."""
        pass

    @abstractmethod
    def fetch_collection_names(self, handle: Any, database: str) -> List[str]:
        """Names of the collections inside ``database``."""
        pass

    @abstractmethod
    def fetch_columns(self, handle: Any, database: str, collection: str) -> List[ColumnInfo]:
        """Column definitions of a collection with canonical types."""
        pass

    def fetch_indexes(self, handle: Any, database: str, collection: str) -> List[Dict[str, Any]]:
        """Raw index entries of a collection, parsed later by :meth:`parse_index`."""
        return []

    def parse_index(self, raw: Dict[str, Any]) -> Optional[IndexInfo]:
        """Turn a raw index entry into an IndexInfo, or None if it can't be parsed."""
        return None

    def count_collections(self, handle: Any, database: str) -> Optional[int]:
        """Cardinality hint for ``database``."""
        return len(self.fetch_collection_names(handle, database))

    def count_columns(self, handle: Any, database: str, collection: str) -> Optional[int]:
        """Cardinality hint for ``collection``."""
        return len(self.fetch_columns(handle, database, collection))

    # Schema operations

    def list_databases(self, handle: Any) -> List[DatabaseInfo]:
        return self.introspector.list_databases(handle)

    def list_collections(self, handle: Any, database: str) -> List[CollectionInfo]:
        return self.introspector.list_collections(handle, database)

    def get_schema(self, handle: Any, database: str, collection: str) -> SchemaInfo:
        return self.introspector.get_schema(handle, database, collection)

    # Query operations

    @abstractmethod
    def run_query(self, handle: Any, request: QueryRequest) -> QueryPage:
        """Run one page of a query.

        ``request.page_size`` is always set by the pipeline. ``page_state`` is
        an opaque token previously returned by this adapter in
        ``QueryPage.next_page_state``.
        """
        pass

    def build_type_normalizer(self) -> TypeNormalizer:
        """Normalizer for this backend's native type tags."""
        return TypeNormalizer({})

    def normalize_type(self, native_type: Any) -> str:
        """Canonical name of a backend-native column type."""
        return self.type_normalizer.normalize(native_type)

    def classify_error(self, error: BaseException) -> QueryErrorKind:
        """Classify a failure. Subclasses check structured driver errors first."""
        return classify_exception(error)

    @abstractmethod
    def get_system_info(self, handle: Any) -> SystemInfo:
        """Backend version and topology summary."""
        pass

    # Optional operations

    def list_indexes(self, handle: Any, database: str, collection: str) -> List[IndexInfo]:
        """Secondary indexes of a collection (requires ``supports_indexes``)."""
        raise UnsupportedOperationError('list_indexes', self.backend_type)

    def run_aggregation(self, handle: Any, pipeline: Any, page_size: int) -> QueryPage:
        """Run an aggregation pipeline (requires ``supports_aggregation``)."""
        raise UnsupportedOperationError('execute_aggregation', self.backend_type)
