"""
Query Cache Configuration

Configuration management with environment variable support.
Implements secure defaults and validation for all cache settings.
"""

from functools import lru_cache
from typing import List

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Cache settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )

    # Redis configuration (durable tier and tag registry)
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0", description="Redis connection URL"
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=10, ge=1, le=50, description="Redis connection pool size"
    )
    REDIS_CONNECTION_TIMEOUT: float = Field(
        default=2.0, gt=0, le=30, description="Redis connect timeout in seconds"
    )
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=1.0,
        gt=0,
        le=30,
        description="Upper bound for a single tier operation in seconds",
    )

    # Circuit breaker settings
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = Field(
        default=5, ge=1, le=20, description="Circuit breaker failure threshold"
    )
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Circuit breaker recovery timeout in seconds",
    )

    # Cache behaviour
    CACHE_KEY_PREFIX: str = Field(
        default="qcache", min_length=1, description="Prefix for every cache key"
    )
    CACHE_VOLATILE_MAXSIZE: int = Field(
        default=10000, ge=1, description="Maximum entries in the in-memory tier"
    )
    CACHE_DURATION_SHORT: int = Field(
        default=300, ge=1, description="Short TTL in seconds (5 minutes)"
    )
    CACHE_DURATION_MEDIUM: int = Field(
        default=900, ge=1, description="Medium TTL in seconds (15 minutes)"
    )
    CACHE_DURATION_LONG: int = Field(
        default=1800, ge=1, description="Long TTL in seconds (30 minutes)"
    )
    CACHE_VOLATILE_ONLY_NAMESPACES: str = Field(
        default="",
        description="Namespaces kept out of the durable tier (comma-separated)",
    )

    LOG_LEVEL: str = Field(default="INFO", description="Logging level")

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        """Validate Redis URL scheme."""
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must be a redis://, rediss:// or unix:// URL")
        return v

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    @property
    def volatile_only_namespaces_list(self) -> List[str]:
        """Get volatile-only namespaces as list."""
        return [
            namespace.strip()
            for namespace in self.CACHE_VOLATILE_ONLY_NAMESPACES.split(",")
            if namespace.strip()
        ]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Create global settings instance
settings = get_settings()
