"""
Environment-aware configuration settings for the workflow automation core.

Each sub-settings block reads its own prefixed environment variables.
"""

from enum import Enum
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""

    DEV = "dev"
    TEST = "test"
    PROD = "prod"


class EngineSettings(BaseSettings):
    """Execution engine settings."""

    model_config = SettingsConfigDict(env_prefix="ENGINE_")

    enable_audit: bool = Field(default=True, description="Record audit entries")
    max_run_history: int = Field(
        default=1000,
        ge=1,
        description="Runs kept for querying; oldest finished runs are evicted first",
    )
    max_audit_entries: int = Field(
        default=10000,
        ge=1,
        description="Audit entries kept; oldest entries are evicted first",
    )


class IdempotencySettings(BaseSettings):
    """
    Step idempotency key store settings.

    Keys are remembered across runs until they expire or are pushed out
    by newer keys.
    """

    model_config = SettingsConfigDict(env_prefix="IDEMPOTENCY_")

    max_keys: int = Field(default=10000, ge=1, description="Maximum keys remembered (LRU)")
    ttl_seconds: float = Field(default=86400.0, gt=0, description="Key lifetime (seconds)")


class SchedulerSettings(BaseSettings):
    """Schedule tick loop settings."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    tick_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Sleep between schedule checks (seconds)",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        case_sensitive=False,  # ENGINE_ENABLE_AUDIT and engine_enable_audit both work
        extra="ignore",        # Ignore unknown environment variables
    )

    # Application
    app_name: str = Field(default="Workflow Automation")
    environment: Environment = Field(default=Environment.DEV)
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Sub-settings
    engine: EngineSettings = Field(default_factory=EngineSettings)
    idempotency: IdempotencySettings = Field(default_factory=IdempotencySettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)

    @field_validator("environment", mode="before")
    @classmethod
    def validate_environment(cls, v: str | Environment) -> Environment:
        """Validate and convert environment string to enum."""
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
    """Process-wide settings, read from the environment on first use."""
    return Settings()
