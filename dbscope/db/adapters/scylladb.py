"""ScyllaDB adapter."""

from dbscope.db.adapters.cassandra import CassandraAdapter


class ScyllaDBAdapter(CassandraAdapter):
    """ScyllaDB adapter.

    ScyllaDB speaks CQL over the same native protocol, so everything but the
    metadata and the extra system keyspaces comes from the Cassandra adapter.
    """

    backend_type = 'scylladb'
    display_name = 'ScyllaDB'
    icon = '🐙'
    system_databases = CassandraAdapter.system_databases | frozenset({'system_distributed_everywhere'})
