"""Configuration management for DBScope."""

from dbscope.config.models import (
    BackendType,
    ConnectionConfig,
    ConnectionProfile,
    SessionSettings,
    QuerySettings,
    HistorySettings,
    DBScopeConfig,
    EnvironmentSettings,
)
from dbscope.config.parser import (
    ConfigParser,
    load_config,
    validate_config_file,
    create_sample_config,
)

__all__ = [
    # Models
    "BackendType",
    "ConnectionConfig",
    "ConnectionProfile",
    "SessionSettings",
    "QuerySettings",
    "HistorySettings",
    "DBScopeConfig",
    "EnvironmentSettings",
    # Parser
    "ConfigParser",
    "load_config",
    "validate_config_file",
    "create_sample_config",
]
