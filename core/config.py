"""
Configuration management for Storyflow.

Centralizes runtime settings for the orchestration layer:
- Retry and backoff policy for provider calls
- Task polling cadence
- Batch scheduler defaults
- Storage locations (key-value config file, snapshots, database)

Provider credentials are NOT kept here; they live in the persisted
multimedia configuration managed by ``services.multimedia.ConfigManager``.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class RetryConfig:
    """Bounded retry policy for transient provider errors."""
    max_attempts: int = field(default_factory=lambda: _env_int("RETRY_MAX_ATTEMPTS", 3))
    initial_delay: float = field(default_factory=lambda: _env_float("RETRY_INITIAL_DELAY", 1.0))
    max_delay: float = field(default_factory=lambda: _env_float("RETRY_MAX_DELAY", 30.0))
    multiplier: float = 2.0


@dataclass
class PollingConfig:
    """Async task polling."""
    interval: float = field(default_factory=lambda: _env_float("POLL_INTERVAL", 3.0))
    # Synthesized progress caps below 100 until the provider reports success
    progress_ceiling: int = 99


@dataclass
class BatchDefaults:
    """Defaults applied to batch runs when the caller does not override them."""
    processing_interval: float = field(default_factory=lambda: _env_float("BATCH_PROCESSING_INTERVAL", 5.0))
    max_retries: int = field(default_factory=lambda: _env_int("BATCH_MAX_RETRIES", 3))
    retry_delay: float = field(default_factory=lambda: _env_float("BATCH_RETRY_DELAY", 10.0))
    aspect_ratio: str = field(default_factory=lambda: os.getenv("BATCH_ASPECT_RATIO", "16:9"))
    duration: int = field(default_factory=lambda: _env_int("BATCH_DURATION", 10))
    enable_notifications: bool = field(
        default_factory=lambda: os.getenv("BATCH_NOTIFICATIONS", "true").lower() == "true"
    )


@dataclass
class StorageConfig:
    """Where configuration, snapshots and downloads are written."""
    config_path: str = field(default_factory=lambda: os.getenv("STORYFLOW_CONFIG_PATH", ".storyflow/config.json"))
    snapshot_dir: str = field(default_factory=lambda: os.getenv("STORYFLOW_SNAPSHOT_DIR", ".storyflow/batches"))
    output_dir: str = field(default_factory=lambda: os.getenv("STORYFLOW_OUTPUT_DIR", "output"))


@dataclass
class DatabaseConfig:
    """Optional Postgres sink for batch snapshots."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 1
    pool_max_size: int = 5


@dataclass
class CloneConfig:
    """Clone workflow timing."""
    capture_timeout: float = field(default_factory=lambda: _env_float("CLONE_CAPTURE_TIMEOUT", 60.0))
    capture_poll_interval: float = 0.5
    max_retries: int = 3


@dataclass
class Config:
    """Main configuration class."""

    retry: RetryConfig = field(default_factory=RetryConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    batch: BatchDefaults = field(default_factory=BatchDefaults)
    storage: StorageConfig = field(default_factory=StorageConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    clone: CloneConfig = field(default_factory=CloneConfig)

    # Multimedia config cache lifetime
    cache_ttl_seconds: float = field(default_factory=lambda: _env_float("CONFIG_CACHE_TTL", 300.0))
    # Per-request HTTP timeout when a provider config does not set one
    http_timeout_seconds: float = field(default_factory=lambda: _env_float("HTTP_TIMEOUT", 30.0))

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if self.retry.max_attempts < 1:
            issues.append("RETRY_MAX_ATTEMPTS must be at least 1")

        if self.retry.initial_delay > self.retry.max_delay:
            issues.append("RETRY_INITIAL_DELAY is larger than RETRY_MAX_DELAY")

        if self.polling.interval <= 0:
            issues.append("POLL_INTERVAL must be positive")

        if self.batch.max_retries < 0:
            issues.append("BATCH_MAX_RETRIES cannot be negative")

        if self.cache_ttl_seconds < 0:
            issues.append("CONFIG_CACHE_TTL cannot be negative")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
