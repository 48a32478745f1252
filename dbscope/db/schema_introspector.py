"""Schema introspection that tolerates partial failure.

Primary listing queries (which containers, which collections, which columns)
must succeed, otherwise :class:`BackendError` is raised. Secondary lookups
(cardinality hints, index definitions) are independent: a failing lookup is
logged and degrades to a zero hint or a missing index instead of aborting the
whole listing.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Callable, List, Optional, TypeVar

from dbscope.db.models import CollectionInfo, DatabaseInfo, IndexInfo, SchemaInfo
from dbscope.exceptions import BackendError, DBScopeError

if TYPE_CHECKING:
    from dbscope.db.base import BaseAdapter

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SchemaIntrospector:
    """Lists containers, collections, columns and indexes through an adapter."""

    def __init__(self, adapter: "BaseAdapter") -> None:
        self.adapter = adapter

    def list_databases(self, handle: Any) -> List[DatabaseInfo]:
        """Top-level containers minus the backend's system containers."""
        names = self._primary("list databases", self.adapter.fetch_database_names, handle)
        excluded = self.adapter.system_databases

        databases = []
        for name in names:
            if name in excluded:
                continue
            count = self._hint(
                f"collection count for database {name}",
                self.adapter.count_collections, handle, name,
            )
            databases.append(DatabaseInfo(name=name, collections_count=count))

        logger.debug(f"Listed {len(databases)} database(s) ({len(names) - len(databases)} system skipped)")
        return databases

    def list_collections(self, handle: Any, database: str) -> List[CollectionInfo]:
        """Collections of ``database``, each with a column count hint."""
        names = self._primary(
            f"list collections of {database}",
            self.adapter.fetch_collection_names, handle, database,
        )

        collections = []
        for name in names:
            count = self._hint(
                f"column count for {database}.{name}",
                self.adapter.count_columns, handle, database, name,
            )
            collections.append(CollectionInfo(name=name, columns_count=count))
        return collections

    def get_schema(self, handle: Any, database: str, collection: str) -> SchemaInfo:
        """Column definitions plus secondary indexes of one collection."""
        start_time = time.perf_counter()
        columns = self._primary(
            f"get schema for {database}.{collection}",
            self.adapter.fetch_columns, handle, database, collection,
        )

        try:
            indexes = self.list_indexes(handle, database, collection)
        except BackendError as e:
            logger.warning(f"Could not get indexes for {database}.{collection}: {e}")
            indexes = []

        logger.debug(
            f"Introspected {database}.{collection} in {(time.perf_counter() - start_time) * 1000:.2f}ms "
            f"({len(columns)} columns, {len(indexes)} indexes)"
        )
        return SchemaInfo(columns=columns, indexes=indexes)

    def list_indexes(self, handle: Any, database: str, collection: str) -> List[IndexInfo]:
        """Secondary indexes; entries that cannot be parsed are skipped."""
        raw_indexes = self._primary(
            f"list indexes of {database}.{collection}",
            self.adapter.fetch_indexes, handle, database, collection,
        )

        indexes = []
        for raw in raw_indexes:
            try:
                index = self.adapter.parse_index(raw)
            except Exception as e:
                logger.warning(f"Skipping index entry {raw!r} on {database}.{collection}: {e}")
                continue
            if index is None:
                logger.warning(f"Skipping unparsable index entry {raw!r} on {database}.{collection}")
                continue
            indexes.append(index)
        return indexes

    def _primary(self, description: str, func: Callable[..., T], *args: Any) -> T:
        try:
            return func(*args)
        except DBScopeError:
            raise
        except Exception as e:
            raise BackendError(
                f"Failed to {description}: {e}",
                backend_type=self.adapter.backend_type,
            ) from e

    def _hint(self, description: str, func: Callable[..., Optional[int]], *args: Any) -> int:
        try:
            value = func(*args)
        except Exception as e:
            logger.warning(f"Could not get {description}: {e}")
            return 0
        return value if value is not None else 0
