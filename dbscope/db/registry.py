"""Registry resolving backend type tokens to adapter instances."""

import logging
from enum import Enum
from threading import Lock
from typing import Dict, List, Optional, Union

from dbscope.config.models import QuerySettings
from dbscope.db.adapters import CassandraAdapter, ScyllaDBAdapter
from dbscope.db.base import BaseAdapter
from dbscope.db.models import AdapterDescriptor
from dbscope.exceptions import AdapterNotFoundError

logger = logging.getLogger(__name__)


def normalize_backend_type(backend_type: Union[str, Enum]) -> str:
    """Registry key for a backend type: the lowercase token."""
    if isinstance(backend_type, Enum):
        backend_type = backend_type.value
    return str(backend_type).strip().lower()


class AdapterRegistry:
    """Holds exactly one adapter instance per backend type.

    Registration happens once, at process start. The registry keeps no
    per-connection state, so one instance is shared by every session.
    """

    def __init__(self) -> None:
        self._adapters: Dict[str, BaseAdapter] = {}
        self._lock = Lock()

    def register(self, adapter: BaseAdapter) -> None:
        """Register ``adapter`` under its backend type.

        Re-registering a type replaces the previous adapter (last writer wins),
        so hosts can override a built-in adapter.
        """
        key = normalize_backend_type(adapter.backend_type)
        with self._lock:
            if key in self._adapters:
                logger.warning(f"Adapter for {key} is already registered. Overwriting.")
            self._adapters[key] = adapter
        logger.info(f"Registered adapter: {adapter.display_name} ({key})")

    def get(self, backend_type: Union[str, Enum]) -> BaseAdapter:
        """Resolve a backend type to its adapter.

        Raises:
            AdapterNotFoundError: If nothing is registered for ``backend_type``.
        """
        key = normalize_backend_type(backend_type)
        adapter = self._adapters.get(key)
        if adapter is None:
            raise AdapterNotFoundError(key, self.available_types())
        return adapter

    def has(self, backend_type: Union[str, Enum]) -> bool:
        return normalize_backend_type(backend_type) in self._adapters

    def available_types(self) -> List[str]:
        """Registered backend type tokens."""
        return list(self._adapters.keys())

    def list_adapters(self) -> List[BaseAdapter]:
        return list(self._adapters.values())

    def describe_all(self) -> List[AdapterDescriptor]:
        """Discovery metadata of every registered adapter."""
        return [adapter.descriptor for adapter in self.list_adapters()]

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, backend_type: object) -> bool:
        return isinstance(backend_type, (str, Enum)) and self.has(backend_type)


def create_default_registry(settings: Optional[QuerySettings] = None) -> AdapterRegistry:
    """Build a registry with the built-in adapters."""
    registry = AdapterRegistry()
    registry.register(CassandraAdapter(settings))
    registry.register(ScyllaDBAdapter(settings))
    return registry
