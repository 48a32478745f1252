"""Pydantic models for DBScope configuration."""

from enum import Enum
from typing import Dict, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class BackendType(str, Enum):
    """Backend type tokens known to DBScope."""
    CASSANDRA = "cassandra"
    SCYLLADB = "scylladb"
    MONGODB = "mongodb"
    DYNAMODB = "dynamodb"
    REDIS = "redis"
    COUCHBASE = "couchbase"


class ConnectionConfig(BaseModel):
    """Connection parameters for any backend.

    This is a superset record: each adapter reads only the fields it needs and
    validates the combination it requires when connecting.
    """

    model_config = ConfigDict(populate_by_name=True)

    host: Optional[str] = None
    port: Optional[int] = None
    uri: Optional[str] = None

    username: Optional[str] = None
    password: Optional[str] = None
    access_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("access_key", "accessKey"))
    secret_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("secret_key", "secretKey"))

    keyspace: Optional[str] = None
    database: Optional[str] = None
    region: Optional[str] = None
    local_data_center: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("local_data_center", "localDataCenter", "local_dc"),
    )

    @field_validator('port')
    def validate_port(cls, v):
        """Validate port number range."""
        if v is not None and (v < 1 or v > 65535):
            raise ValueError("Port must be between 1 and 65535")
        return v

    def connection_fields(self) -> "ConnectionConfig":
        """Return a plain ConnectionConfig with only the connection fields."""
        return ConnectionConfig(**self.model_dump(include=set(ConnectionConfig.model_fields)))


class ConnectionProfile(ConnectionConfig):
    """A named, saved connection: backend type plus connection parameters."""

    type: str = Field(validation_alias=AliasChoices("type", "backend", "backend_type"))
    description: Optional[str] = None

    @field_validator('type')
    def normalize_type(cls, v):
        """Backend tokens are case-insensitive."""
        return str(v).strip().lower()


class SessionSettings(BaseModel):
    """Session table and idle-sweep settings."""
    idle_timeout: Optional[int] = Field(
        default=1800, ge=1, description="Seconds a session may stay unused before it is swept (None disables)"
    )
    sweep_interval: int = Field(default=60, ge=1, le=3600, description="Seconds between idle sweeps")
    tombstone_limit: int = Field(
        default=10000, ge=0, description="How many destroyed session ids are remembered"
    )


class QuerySettings(BaseModel):
    """Query execution settings shared by all adapters."""
    default_page_size: int = Field(default=100, ge=1, le=100000)
    max_page_size: int = Field(default=5000, ge=1, le=100000)
    read_only: bool = Field(default=True, description="Only allow read statements")
    connect_timeout: float = Field(default=10.0, gt=0, le=300, description="Driver connect timeout in seconds")
    request_timeout: float = Field(default=10.0, gt=0, le=3600, description="Driver request timeout in seconds")

    @model_validator(mode='after')
    def validate_page_sizes(self):
        """Ensure default_page_size <= max_page_size."""
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must be <= max_page_size")
        return self


class HistorySettings(BaseModel):
    """Audit history settings."""
    enabled: bool = Field(default=True)
    backend: str = Field(default="memory", pattern="^(memory|sql|none)$")
    url: str = Field(default="sqlite:///data/dbscope.db", description="SQLAlchemy URL for the sql backend")
    max_records: int = Field(default=1000, ge=1, description="Capacity of the in-memory backend")
    queue_size: int = Field(default=1000, ge=1, le=100000)
    retry_attempts: int = Field(default=3, ge=0, le=10, description="Number of retry attempts on write failure")
    retry_delay: float = Field(default=0.5, ge=0.0, le=60.0, description="Delay between retry attempts in seconds")


class DBScopeConfig(BaseModel):
    """Main configuration model for DBScope."""
    profiles: Dict[str, ConnectionProfile] = Field(default_factory=dict)
    default_profile: Optional[str] = None
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    queries: QuerySettings = Field(default_factory=QuerySettings)
    history: HistorySettings = Field(default_factory=HistorySettings)

    @model_validator(mode='after')
    def validate_default_profile(self):
        """Ensure default_profile exists in profiles, or pick the first one."""
        if self.default_profile and self.default_profile not in self.profiles:
            raise ValueError(f"default_profile '{self.default_profile}' not found in profiles")
        if not self.default_profile and self.profiles:
            self.default_profile = next(iter(self.profiles))
        return self


class EnvironmentSettings(BaseSettings):
    """Environment-specific settings."""
    log_level: str = Field(default="WARNING")
    debug: bool = Field(default=False)
    config_file: Optional[str] = Field(default=None)

    model_config = SettingsConfigDict(env_prefix="DBSCOPE_", case_sensitive=False)
