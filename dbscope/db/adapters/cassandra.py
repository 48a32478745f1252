"""Apache Cassandra adapter."""

import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

from cassandra import (
    AuthenticationFailed,
    OperationTimedOut,
    Timeout,
    Unauthorized,
)
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import EXEC_PROFILE_DEFAULT, Cluster, ExecutionProfile, NoHostAvailable, Session
from cassandra.policies import DCAwareRoundRobinPolicy
from cassandra.query import SimpleStatement, dict_factory

from dbscope.config.models import ConnectionConfig
from dbscope.db.base import BaseAdapter
from dbscope.db.errors import classify_exception, error_message, most_specific
from dbscope.db.models import (
    Capabilities,
    ColumnInfo,
    IndexInfo,
    QueryErrorKind,
    QueryLanguage,
    QueryPage,
    QueryRequest,
    SchemaType,
    SystemInfo,
)
from dbscope.db.types import CanonicalType, NativeType, TypeNormalizer, TypeSyntaxError, parse_native_type
from dbscope.exceptions import BackendConnectionError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9042
DEFAULT_DATA_CENTER = 'datacenter1'

# Native protocol error codes
_CODE_KINDS: Dict[int, QueryErrorKind] = {
    0x0100: QueryErrorKind.AUTHENTICATION_FAILED,   # bad credentials
    0x2100: QueryErrorKind.AUTHENTICATION_FAILED,   # unauthorized
    0x1100: QueryErrorKind.TIMEOUT,                 # write timeout
    0x1200: QueryErrorKind.TIMEOUT,                 # read timeout
    0x2000: QueryErrorKind.QUERY_SYNTAX_ERROR,      # syntax error
    0x2200: QueryErrorKind.QUERY_SYNTAX_ERROR,      # invalid query
}

# Column kinds in system_schema.columns, in primary key order
_KIND_ORDER = {'partition_key': 0, 'clustering': 1, 'static': 2, 'regular': 3}

_INDEX_TARGET = re.compile(r'^\s*(?:(keys|values|entries|full)\s*\(\s*(.+?)\s*\)|(.+?))\s*$', re.IGNORECASE)

CQL_SCALAR_TYPES = {
    'ascii': CanonicalType.TEXT,
    'text': CanonicalType.TEXT,
    'varchar': CanonicalType.TEXT,
    'tinyint': CanonicalType.INT8,
    'smallint': CanonicalType.INT16,
    'int': CanonicalType.INT32,
    'bigint': CanonicalType.INT64,
    'counter': CanonicalType.INT64,
    'varint': CanonicalType.INTEGER,
    'decimal': CanonicalType.DECIMAL,
    'float': CanonicalType.FLOAT32,
    'double': CanonicalType.FLOAT64,
    'boolean': CanonicalType.BOOLEAN,
    'timestamp': CanonicalType.TIMESTAMP,
    'date': CanonicalType.DATE,
    'time': CanonicalType.TIME,
    'duration': CanonicalType.DURATION,
    'uuid': CanonicalType.UUID,
    'timeuuid': CanonicalType.UUID,
    'inet': CanonicalType.INET,
    'blob': CanonicalType.BLOB,
    'udt': CanonicalType.STRUCT,
}

CQL_COLLECTION_TYPES = {
    'list': 'list',
    'set': 'set',
    'map': 'map',
    'tuple': 'tuple',
}


@dataclass
class CassandraHandle:
    """A connected cluster and its session."""
    cluster: Cluster
    session: Session


def encode_page_state(paging_state: Optional[bytes]) -> Optional[str]:
    """Driver paging state bytes as URL-safe base64 text."""
    if not paging_state:
        return None
    return base64.urlsafe_b64encode(paging_state).decode('ascii')


class InvalidPageStateError(ValueError):
    """A page state that was not produced by :func:`encode_page_state`."""


def decode_page_state(page_state: Optional[str]) -> Optional[bytes]:
    """Inverse of :func:`encode_page_state`.

    Raises:
        InvalidPageStateError: If ``page_state`` was not produced by this adapter.
    """
    if not page_state:
        return None
    if not isinstance(page_state, str):
        raise InvalidPageStateError(f"Invalid page state: {page_state!r}")
    try:
        return base64.b64decode(page_state.encode('ascii'), altchars=b'-_', validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise InvalidPageStateError(f"Invalid page state: {page_state!r}") from e


def cql_type_to_native(cql_type: Any) -> Optional[NativeType]:
    """Convert a driver cqltype class (``column_types`` entry) to a NativeType."""
    if cql_type is None:
        return None
    if getattr(cql_type, 'udt_name', None):
        return NativeType('udt')
    typename = getattr(cql_type, 'typename', None)
    if not typename:
        return None
    tag = typename.rsplit('.', 1)[-1].lower()
    if tag in ('usertype', 'reversedtype'):
        # Marshal class names the driver leaves unresolved
        tag = 'udt' if tag == 'usertype' else 'frozen'
    subtypes = getattr(cql_type, 'subtypes', None) or ()
    params = tuple(p for p in (cql_type_to_native(s) for s in subtypes) if p is not None)
    return NativeType(tag, params)


def mark_user_types(native: NativeType, user_types: Set[str]) -> NativeType:
    """Replace references to user defined types by the ``udt`` tag."""
    if not native.params and native.tag in user_types:
        return NativeType('udt')
    if not native.params:
        return native
    return NativeType(native.tag, tuple(mark_user_types(p, user_types) for p in native.params))


class CassandraAdapter(BaseAdapter):
    """Apache Cassandra adapter using the DataStax Python driver."""

    backend_type = 'cassandra'
    display_name = 'Apache Cassandra'
    icon = '🗂️'
    capabilities = Capabilities(
        supports_keyspaces=True,
        supports_indexes=True,
        supports_aggregation=False,
        supports_transactions=False,
        query_language=QueryLanguage.CQL,
        schema_type=SchemaType.SCHEMA_REQUIRED,
    )
    system_databases = frozenset({
        'system',
        'system_auth',
        'system_distributed',
        'system_schema',
        'system_traces',
        'system_views',
        'system_virtual_schema',
    })

    def build_type_normalizer(self) -> TypeNormalizer:
        return TypeNormalizer(CQL_SCALAR_TYPES, CQL_COLLECTION_TYPES, wrapper_tags=('frozen',))

    def get_contact_points(self, config: ConnectionConfig) -> List[str]:
        """Contact points from ``host`` (comma separated) or a ``cassandra://`` uri."""
        source = config.host
        if not source and config.uri:
            source = re.sub(r'^[a-z]+://', '', config.uri.strip()).split('/', 1)[0]
            source = source.rsplit('@', 1)[-1]
        if not source:
            raise BackendConnectionError(
                f"{self.display_name} requires a host or uri",
                backend_type=self.backend_type,
                error_kind=QueryErrorKind.UNKNOWN.value,
            )
        return [point.strip() for point in source.split(',') if point.strip()]

    def build_cluster(self, config: ConnectionConfig) -> Cluster:
        """Create an unconnected Cluster for ``config``."""
        contact_points = []
        port = config.port or DEFAULT_PORT
        for point in self.get_contact_points(config):
            host, sep, point_port = point.rpartition(':')
            if sep and point_port.isdigit() and not config.port:
                contact_points.append(host)
                port = int(point_port)
            else:
                contact_points.append(point)

        profile = ExecutionProfile(
            load_balancing_policy=DCAwareRoundRobinPolicy(
                local_dc=config.local_data_center or DEFAULT_DATA_CENTER
            ),
            row_factory=dict_factory,
            request_timeout=self.settings.request_timeout,
        )

        auth_provider = None
        if config.username and config.password:
            auth_provider = PlainTextAuthProvider(username=config.username, password=config.password)

        return Cluster(
            contact_points=contact_points,
            port=port,
            auth_provider=auth_provider,
            execution_profiles={EXEC_PROFILE_DEFAULT: profile},
            connect_timeout=self.settings.connect_timeout,
        )

    def connect(self, config: ConnectionConfig) -> CassandraHandle:
        cluster = self.build_cluster(config)
        try:
            session = cluster.connect(config.keyspace) if config.keyspace else cluster.connect()
        except Exception as e:
            cluster.shutdown()
            kind = self.classify_error(e)
            raise BackendConnectionError(
                f"{kind.value}: Failed to connect to {self.display_name}: {error_message(e)}",
                backend_type=self.backend_type,
                error_kind=kind.value,
                details={'contact_points': list(cluster.contact_points), 'keyspace': config.keyspace},
            ) from e

        logger.info(f"Connected to {self.display_name} at {', '.join(map(str, cluster.contact_points))}")
        return CassandraHandle(cluster=cluster, session=session)

    def close(self, handle: CassandraHandle) -> None:
        handle.cluster.shutdown()

    # Introspection primitives

    def _select(self, handle: CassandraHandle, query: str, parameters: Iterable[Any] = ()) -> List[Dict[str, Any]]:
        return list(handle.session.execute(query, tuple(parameters)))

    def fetch_database_names(self, handle: CassandraHandle) -> List[str]:
        rows = self._select(handle, "SELECT keyspace_name FROM system_schema.keyspaces")
        return [row['keyspace_name'] for row in rows]

    def fetch_collection_names(self, handle: CassandraHandle, database: str) -> List[str]:
        rows = self._select(
            handle,
            "SELECT table_name FROM system_schema.tables WHERE keyspace_name = %s",
            [database],
        )
        return [row['table_name'] for row in rows]

    def count_columns(self, handle: CassandraHandle, database: str, collection: str) -> int:
        rows = self._select(
            handle,
            "SELECT column_name FROM system_schema.columns WHERE keyspace_name = %s AND table_name = %s",
            [database, collection],
        )
        return len(rows)

    def fetch_user_type_names(self, handle: CassandraHandle, database: str) -> Set[str]:
        """Names of the user defined types of a keyspace (empty on failure)."""
        try:
            rows = self._select(
                handle,
                "SELECT type_name FROM system_schema.types WHERE keyspace_name = %s",
                [database],
            )
        except Exception as e:
            logger.warning(f"Could not get user types of keyspace {database}: {e}")
            return set()
        return {row['type_name'].lower() for row in rows}

    def fetch_columns(self, handle: CassandraHandle, database: str, collection: str) -> List[ColumnInfo]:
        rows = self._select(
            handle,
            "SELECT column_name, type, kind, position, clustering_order "
            "FROM system_schema.columns WHERE keyspace_name = %s AND table_name = %s",
            [database, collection],
        )
        rows.sort(key=lambda row: (_KIND_ORDER.get(row.get('kind'), 3), row.get('position') or 0, row['column_name']))

        user_types = self.fetch_user_type_names(handle, database) if rows else set()

        columns = []
        for row in rows:
            kind = row.get('kind')
            native_text = row.get('type')
            columns.append(ColumnInfo(
                name=row['column_name'],
                type=self.normalize_schema_type(native_text, user_types),
                native_type=native_text,
                primary_key=kind in ('partition_key', 'clustering'),
                partition_key=kind == 'partition_key',
                clustering_order=(row.get('clustering_order') or 'asc').upper() if kind == 'clustering' else None,
                position=row.get('position'),
                nullable=kind not in ('partition_key', 'clustering'),
            ))
        return columns

    def normalize_schema_type(self, native_text: Optional[str], user_types: Set[str]) -> str:
        """Canonical name of a type string from system_schema."""
        if not native_text:
            return CanonicalType.UNKNOWN.value
        try:
            native = parse_native_type(native_text)
        except TypeSyntaxError as e:
            logger.debug(f"Unparsable column type {native_text!r}: {e}")
            return CanonicalType.UNKNOWN.value
        return self.type_normalizer.normalize(mark_user_types(native, user_types))

    def fetch_indexes(self, handle: CassandraHandle, database: str, collection: str) -> List[Dict[str, Any]]:
        return self._select(
            handle,
            "SELECT index_name, kind, options FROM system_schema.indexes "
            "WHERE keyspace_name = %s AND table_name = %s",
            [database, collection],
        )

    def parse_index(self, raw: Dict[str, Any]) -> Optional[IndexInfo]:
        """Parse a system_schema.indexes row.

        The target option is one of ``col``, ``"Col"``, ``keys(col)``,
        ``values(col)``, ``entries(col)`` or ``full(col)``.
        """
        name = raw.get('index_name')
        options = raw.get('options') or {}
        target = options.get('target') if isinstance(options, dict) else None
        if not name or not target:
            return None

        match = _INDEX_TARGET.match(str(target))
        if not match:
            return None
        function, wrapped, plain = match.groups()
        column = (wrapped if function else plain).strip()
        if len(column) >= 2 and column[0] == column[-1] == '"':
            column = column[1:-1].replace('""', '"')
        if not column:
            return None

        return IndexInfo(
            name=name,
            column=column,
            kind=function.lower() if function else None,
            type=raw.get('kind'),
        )

    def list_indexes(self, handle: CassandraHandle, database: str, collection: str) -> List[IndexInfo]:
        return self.introspector.list_indexes(handle, database, collection)

    # Query operations

    def run_query(self, handle: CassandraHandle, request: QueryRequest) -> QueryPage:
        statement = SimpleStatement(request.text, fetch_size=request.page_size)
        result = handle.session.execute(
            statement,
            request.parameters or None,
            paging_state=decode_page_state(request.page_state),
        )

        rows = [dict(row) for row in result.current_rows]
        names = result.column_names or []
        types = result.column_types or [None] * len(names)
        return QueryPage(
            rows=rows,
            columns=list(zip(names, types)),
            next_page_state=encode_page_state(result.paging_state),
        )

    def normalize_type(self, native_type: Any) -> str:
        if native_type is None or isinstance(native_type, (str, NativeType)):
            return self.type_normalizer.normalize(native_type)
        return self.type_normalizer.normalize(cql_type_to_native(native_type))

    def classify_error(self, error: BaseException) -> QueryErrorKind:
        """Classify a driver error by type and protocol code before its message."""
        if isinstance(error, NoHostAvailable):
            host_errors = list((getattr(error, 'errors', None) or {}).values())
            kind = most_specific(self.classify_error(e) for e in host_errors if isinstance(e, BaseException))
            return kind if kind is not QueryErrorKind.UNKNOWN else QueryErrorKind.CONNECTION_REFUSED
        if isinstance(error, AuthenticationFailed):
            return QueryErrorKind.AUTHENTICATION_FAILED
        if isinstance(error, (OperationTimedOut, Timeout)):
            return QueryErrorKind.TIMEOUT
        if isinstance(error, Unauthorized):
            return QueryErrorKind.AUTHENTICATION_FAILED
        if isinstance(error, InvalidPageStateError):
            return QueryErrorKind.QUERY_SYNTAX_ERROR

        code = getattr(error, 'code', None)
        if isinstance(code, int) and code in _CODE_KINDS:
            return _CODE_KINDS[code]
        return classify_exception(error)

    def get_system_info(self, handle: CassandraHandle) -> SystemInfo:
        local = self._select(handle, "SELECT cluster_name, release_version, data_center FROM system.local")
        row = local[0] if local else {}
        peers = self._select(handle, "SELECT peer FROM system.peers")
        return SystemInfo(
            version=row.get('release_version'),
            cluster_name=row.get('cluster_name'),
            nodes_count=len(peers) + 1,
            extra={'data_center': row.get('data_center')} if row.get('data_center') else {},
        )
