"""DBScope: a multi-backend NoSQL database explorer.

DBScope provides:
- One capability contract for every backend adapter
- An adapter registry keyed by backend type
- Session management with idle expiry
- A shared query pipeline with pagination, type normalization and auditing
- Schema introspection tolerant of partial failure
- A CLI for exploring keyspaces, tables and query results
"""

__version__ = "0.1.0"

# Core exports
from dbscope.exceptions import (
    DBScopeError,
    ConfigurationError,
    AdapterNotFoundError,
    SessionNotFoundError,
    SessionClosedError,
    BackendConnectionError,
    BackendError,
    UnsupportedOperationError,
)

__all__ = [
    "__version__",
    "DBScopeError",
    "ConfigurationError",
    "AdapterNotFoundError",
    "SessionNotFoundError",
    "SessionClosedError",
    "BackendConnectionError",
    "BackendError",
    "UnsupportedOperationError",
]
