"""
Business Metrics Analytics Core
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional, List
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """MySQL Database Configuration (live orders, reservations, items)"""

    model_config = SettingsConfigDict(env_prefix="MYSQL_")

    host: str = Field(default="127.0.0.1", description="Database host")
    port: int = Field(default=3306, description="Database port")
    db: str = Field(default="zakaa_db", alias="MYSQL_DATABASE", description="Database name")
    user: str = Field(default="root", description="Database user")
    password: SecretStr = Field(default="", description="Database password")
    pool_size: int = Field(default=10, description="Connection pool size")
    max_overflow: int = Field(default=5, description="Max overflow connections")
    pool_recycle: int = Field(default=1800, description="Recycle connections after N seconds")
    echo: bool = Field(default=False, description="Echo SQL queries")

    @property
    def async_url(self) -> str:
        """Async database URL for aiomysql"""
        return f"mysql+aiomysql://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class MongoSettings(BaseSettings):
    """MongoDB Configuration (archived order logs, chat message logs)"""

    model_config = SettingsConfigDict(env_prefix="MONGODB_")

    host: str = Field(default="127.0.0.1", description="MongoDB host")
    port: int = Field(default=27017, description="MongoDB port")
    db: str = Field(default="zakaa_db", alias="MONGODB_DATABASE", description="MongoDB database name")
    server_selection_timeout_ms: int = Field(
        default=1000,
        description="Fail fast when the document store is unreachable",
    )

    @property
    def url(self) -> str:
        """MongoDB connection URL"""
        return f"mongodb://{self.host}:{self.port}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=50, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    decode_responses: bool = Field(default=True, description="Decode responses to strings")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class AnalyticsSettings(BaseSettings):
    """Metric computation tunables"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    response_window_seconds: int = Field(
        default=300,
        description="Window for correlating an inbound chat message with an outbound reply",
    )
    churn_lookback_months: int = Field(default=2, description="Months without orders before a customer is churned")
    retention_windows: List[int] = Field(default=[7, 14, 30], description="Retention windows in days")
    default_limit: int = Field(default=10, description="Default size of ranked lists")
    query_timeout_seconds: float = Field(default=15.0, description="Timeout applied to every datastore call")
    table_utilization_days: int = Field(default=30, description="Reservation count treated as full utilization")
    trend_default_days: int = Field(default=30, description="Trend window when no date range is given")
    cache_ttl_seconds: int = Field(default=60, description="TTL for cached API responses")

    @field_validator("response_window_seconds", "churn_lookback_months", "default_limit", "table_utilization_days")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero or negative tunables"""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


class MonitoringSettings(BaseSettings):
    """Logging Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="bizmetrics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")
    api_workers: int = Field(default=4, alias="API_WORKERS", description="API workers")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    mongo: MongoSettings = Field(default_factory=MongoSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
