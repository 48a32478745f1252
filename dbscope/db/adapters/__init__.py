"""Database adapters for different backend types."""

from dbscope.db.adapters.cassandra import CassandraAdapter
from dbscope.db.adapters.scylladb import ScyllaDBAdapter

__all__ = [
    "CassandraAdapter",
    "ScyllaDBAdapter",
]
