"""Core exceptions for DBScope."""

from typing import Any, Dict, List, Optional


class DBScopeError(Exception):
    """Base exception for all DBScope errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(DBScopeError):
    """Raised when there's an error in configuration parsing or validation."""
    pass


class AdapterNotFoundError(DBScopeError):
    """Raised when no adapter is registered for a backend type."""

    def __init__(self, backend_type: str, available_types: Optional[List[str]] = None):
        available = available_types or []
        super().__init__(
            f"Database adapter for '{backend_type}' not found. "
            f"Available: {', '.join(available) if available else 'none'}",
            {'backend_type': backend_type, 'available_types': available},
        )
        self.backend_type = backend_type
        self.available_types = available


class SessionNotFoundError(DBScopeError):
    """Raised when an operation references a session id that was never issued."""

    def __init__(self, session_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Connection '{session_id}' not found. Please connect first.",
            {'session_id': session_id},
        )
        self.session_id = session_id


class SessionClosedError(SessionNotFoundError):
    """Raised when a session id existed but was disconnected or expired."""

    def __init__(self, session_id: str, reason: str = "closed"):
        super().__init__(
            session_id,
            f"Connection '{session_id}' is no longer available ({reason}). Please reconnect.",
        )
        self.details['reason'] = reason
        self.reason = reason


class BackendConnectionError(DBScopeError):
    """Raised when opening a backend connection fails."""

    def __init__(
        self,
        message: str,
        backend_type: Optional[str] = None,
        error_kind: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.backend_type = backend_type
        self.error_kind = error_kind


class BackendError(DBScopeError):
    """Raised when an introspection or system query against a backend fails."""

    def __init__(
        self,
        message: str,
        backend_type: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.backend_type = backend_type


class UnsupportedOperationError(DBScopeError):
    """Raised when an optional capability is invoked on an adapter that lacks it."""

    def __init__(self, operation: str, backend_type: Optional[str] = None):
        super().__init__(
            f"Operation '{operation}' is not supported by backend '{backend_type}'",
            {'operation': operation, 'backend_type': backend_type},
        )
        self.operation = operation
        self.backend_type = backend_type


class AuditLoggingError(DBScopeError):
    """Raised by history sinks when a record cannot be written."""
    pass
