"""
Configuration management for the cache optimization subsystem.
Centralized configuration with environment variables.
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Cache optimization settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Redis configuration (optional - without it every cache call degrades to a miss)
    redis_url: Optional[str] = Field(default=None, validation_alias="REDIS_URL")
    redis_max_connections: int = Field(default=50, validation_alias="REDIS_MAX_CONNECTIONS")
    redis_timeout: int = Field(default=5, validation_alias="REDIS_TIMEOUT")

    # Key layout
    cache_key_namespace: str = Field(default="", validation_alias="CACHE_KEY_NAMESPACE")

    # Capacity ceilings used by the memory pressure heuristics
    cache_capacity_keys: int = Field(default=100_000, validation_alias="CACHE_CAPACITY_KEYS")
    cache_capacity_mb: int = Field(default=100, validation_alias="CACHE_CAPACITY_MB")
    cache_avg_entry_bytes: int = Field(default=2048, validation_alias="CACHE_AVG_ENTRY_BYTES")

    # Store access
    cache_scan_batch_size: int = Field(default=100, validation_alias="CACHE_SCAN_BATCH_SIZE")
    cache_background_write_timeout: float = Field(default=2.0, validation_alias="CACHE_BACKGROUND_WRITE_TIMEOUT")

    # Usage pattern retention (7 days)
    cache_pattern_retention_hours: int = Field(default=168, validation_alias="CACHE_PATTERN_RETENTION_HOURS")

    # Compression thresholds in bytes
    compression_threshold_embedding: int = Field(default=1024, validation_alias="COMPRESSION_THRESHOLD_EMBEDDING")
    compression_threshold_search: int = Field(default=2048, validation_alias="COMPRESSION_THRESHOLD_SEARCH")
    compression_threshold_text: int = Field(default=512, validation_alias="COMPRESSION_THRESHOLD_TEXT")
    compression_threshold_json: int = Field(default=1024, validation_alias="COMPRESSION_THRESHOLD_JSON")

    # Cache warming
    warming_enabled: bool = Field(default=True, validation_alias="CACHE_WARMING_ENABLED")
    warming_interval_seconds: int = Field(default=4 * 60 * 60, validation_alias="CACHE_WARMING_INTERVAL_SECONDS")
    warming_batch_size: int = Field(default=5, validation_alias="CACHE_WARMING_BATCH_SIZE")
    warming_batch_delay_seconds: float = Field(default=0.1, validation_alias="CACHE_WARMING_BATCH_DELAY_SECONDS")
    warming_dedup_threshold: float = Field(default=0.8, validation_alias="CACHE_WARMING_DEDUP_THRESHOLD")

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def compression_thresholds(self) -> dict:
        """Compression thresholds keyed by compression content type."""
        return {
            "embedding": self.compression_threshold_embedding,
            "search": self.compression_threshold_search,
            "text": self.compression_threshold_text,
            "json": self.compression_threshold_json,
        }


# Global settings instance
settings = Settings()
