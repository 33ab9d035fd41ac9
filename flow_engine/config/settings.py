"""
Configuration for the flow engine service.

Each concern reads its own environment prefix (REDIS_, POSTGRES_, ENGINE_,
TIMER_, RETRY_, VALIDATION_). Defaults run everything in one process with
in-memory storage, local leases and an in-memory timer queue.
"""

from enum import Enum
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment; only dev exposes the OpenAPI docs."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class RedisSettings(BaseSettings):
    """Redis used for distributed run leases and the timer queue."""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    db: int = Field(default=0, description="Logical Redis database")
    password: Optional[str] = Field(default=None, description="Redis AUTH password")
    max_connections: int = Field(default=50, description="Pool cap shared by leases and timers")
    socket_timeout: float = Field(default=10.0, description="Per-command socket timeout (seconds)")
    socket_connect_timeout: float = Field(default=5.0, description="Connect timeout (seconds)")
    key_prefix: str = Field(default="flow:", description="Prefix for every key the engine writes")

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class PostgresSettings(BaseSettings):
    """PostgreSQL holding graph documents and run snapshots."""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    database: str = Field(default="flow_engine", description="Database holding the workflow tables")
    user: str = Field(default="postgres", description="Login role")
    password: str = Field(default="postgres", description="Login password")
    pool_size: int = Field(default=10, description="Persistent pooled connections")
    max_overflow: int = Field(default=20, description="Extra connections allowed under burst load")
    pool_timeout: float = Field(default=10.0, description="Wait for a free pooled connection (seconds)")

    @property
    def url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def sync_url(self) -> str:
        """Driverless URL for running the alembic migrations."""
        return (
            f"postgresql://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class EngineSettings(BaseSettings):
    """
    Execution engine settings.

    The lease TTL bounds how long a crashed process can hold a run; it must
    be longer than the slowest synchronous step (Trigger/Decision chains are
    sub-millisecond, so the default is generous).
    """

    model_config = SettingsConfigDict(env_prefix="ENGINE_")

    storage_backend: Literal["memory", "postgres"] = Field(
        default="memory",
        description="Where documents and runs are stored",
    )
    lease_backend: Literal["local", "redis"] = Field(
        default="local",
        description="Per-run lease implementation (local for single process)",
    )
    lease_ttl: float = Field(default=30.0, gt=0, description="Lease expiry (seconds)")
    lease_acquire_timeout: float = Field(
        default=10.0,
        gt=0,
        description="How long to wait for a busy run before giving up (seconds)",
    )
    lease_retry_interval: float = Field(
        default=0.05,
        gt=0,
        description="Polling interval while waiting for a distributed lease (seconds)",
    )
    action_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Per-invocation timeout for business actions (seconds)",
    )
    recover_on_start: bool = Field(
        default=True,
        description="Resume timers and re-dispatch actions for parked runs at startup",
    )


class TimerSettings(BaseSettings):
    """Delay timer queue."""

    model_config = SettingsConfigDict(env_prefix="TIMER_")

    backend: Literal["memory", "redis"] = Field(default="memory", description="Timer backend")
    poll_interval: float = Field(default=1.0, gt=0, description="How often due timers are polled (seconds)")
    batch_size: int = Field(default=100, ge=1, description="Maximum timers fired per poll")


class RetrySettings(BaseSettings):
    """Default retry policy for business actions."""

    model_config = SettingsConfigDict(env_prefix="RETRY_")

    max_attempts: int = Field(default=3, description="Invocations per action, the first included")
    initial_delay: float = Field(default=1.0, description="Wait before the second attempt (seconds)")
    max_delay: float = Field(default=60.0, description="Upper bound on any retry wait (seconds)")
    exponential_base: float = Field(default=2.0, description="Growth factor between consecutive waits")
    jitter: bool = Field(default=True, description="Randomise waits so retried actions spread out")


class ValidationSettings(BaseSettings):
    """Publish-time graph validation."""

    model_config = SettingsConfigDict(env_prefix="VALIDATION_")

    strict_decision_branches: bool = Field(
        default=False,
        description="Treat unattached decision branches not marked terminal as errors",
    )


class Settings(BaseSettings):
    """Root settings object; sub-settings load from their own prefixes."""

    model_config = SettingsConfigDict(
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="Business Workflow Engine")
    environment: Environment = Field(default=Environment.DEV)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    redis: RedisSettings = Field(default_factory=RedisSettings)
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    engine: EngineSettings = Field(default_factory=EngineSettings)
    timer: TimerSettings = Field(default_factory=TimerSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        # PROD, Prod and prod are all accepted
        if isinstance(v, Environment):
            return v
        return Environment(v.lower())

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEV

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TEST

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PROD


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()
