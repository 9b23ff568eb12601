"""
Ingestion Service Configuration Management

Configuration models for the ingestion pipeline with validation, YAML
file loading and environment variable overrides.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ..monitoring.memory import MB, MemoryController
from ..monitoring.metrics import MetricsSink
from .resilience import CircuitBreakerConfig, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "~/.docingest/config.yaml"


class RetrySettings(BaseModel):
    """Retry policy for calls to external collaborators."""

    max_retries: int = Field(default=3, ge=0, le=10, description="Retries after the first attempt")
    base_delay: float = Field(default=1.0, ge=0.0, description="Base backoff delay in seconds")
    max_delay: float = Field(default=30.0, ge=0.0, description="Backoff delay cap in seconds")
    backoff_multiplier: float = Field(default=2.0, ge=1.0, description="Exponential backoff multiplier")
    jitter: bool = Field(default=True, description="Scale delays by a random factor in [0.5, 1.0]")

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
            jitter=self.jitter,
        )


class CircuitBreakerSettings(BaseModel):
    failure_threshold: int = Field(default=5, ge=1, description="Consecutive failures before opening")
    reset_timeout: float = Field(default=60.0, ge=0.0, description="Seconds before a half-open probe")

    def to_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
        )


class ChunkingSettings(BaseModel):
    max_tokens: int = Field(default=1000, ge=1, description="Estimated token budget per chunk")
    overlap_tokens: int = Field(default=100, ge=0, description="Overlap budget taken from the previous chunk")


class MemorySettings(BaseModel):
    """Memory thresholds are fractions of max_heap_mb."""

    max_heap_mb: int = Field(default=2048, ge=64, description="Memory ceiling in MB")
    warning_threshold: float = Field(default=0.25, gt=0.0, le=1.0, description="Warning level (fraction)")
    critical_threshold: float = Field(default=0.5, gt=0.0, le=1.0, description="Critical level (fraction)")
    default_batch_size: int = Field(default=10, ge=1, le=500, description="Embedding batch size")
    min_batch_size: int = Field(default=1, ge=1, description="Smallest batch size under pressure")
    critical_pause_seconds: float = Field(default=5.0, ge=0.0, description="Cooldown on critical usage")

    @model_validator(mode='after')
    def check_thresholds(self) -> 'MemorySettings':
        if self.warning_threshold > self.critical_threshold:
            raise ValueError("warning_threshold cannot exceed critical_threshold")
        if self.min_batch_size > self.default_batch_size:
            raise ValueError("min_batch_size cannot exceed default_batch_size")
        return self

    def to_controller(
        self, batch_delay: float = 0.1, metrics: Optional[MetricsSink] = None
    ) -> MemoryController:
        return MemoryController(
            max_heap_bytes=self.max_heap_mb * MB,
            warning_threshold=self.warning_threshold,
            critical_threshold=self.critical_threshold,
            default_batch_size=self.default_batch_size,
            min_batch_size=self.min_batch_size,
            critical_pause=self.critical_pause_seconds,
            batch_delay=batch_delay,
            metrics=metrics,
        )


class ProcessingSettings(BaseModel):
    max_processing_time: float = Field(default=300.0, gt=0.0, description="Per-job deadline in seconds")
    fetch_timeout: float = Field(default=30.0, gt=0.0, description="Page fetch timeout in seconds")
    batch_delay: float = Field(default=0.1, ge=0.0, description="Pause between embedding batches")


class StorageSettings(BaseModel):
    backend: str = Field(default="sqlite", description="Job store backend (memory/sqlite)")
    database_path: str = Field(default="~/.docingest/jobs.db", description="SQLite job database")

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v: str) -> str:
        if v.lower() not in ("memory", "sqlite"):
            raise ValueError("Invalid storage backend. Must be one of: ['memory', 'sqlite']")
        return v.lower()

    @field_validator('database_path')
    @classmethod
    def expand_database_path(cls, v: str) -> str:
        return str(Path(v).expanduser())


class IngestionConfig(BaseModel):
    """Complete configuration for the ingestion service."""

    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    processing: ProcessingSettings = Field(default_factory=ProcessingSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    enable_graceful_degradation: bool = Field(default=True, description="Run fallbacks when a primary path fails")
    log_level: str = Field(default="WARNING", description="Level of the docingest logger")

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()


class ConfigManager:
    """Configuration manager with environment variable support and validation."""

    env_mappings = {
        'DOCINGEST_MAX_RETRIES': 'retry.max_retries',
        'DOCINGEST_BASE_DELAY': 'retry.base_delay',
        'DOCINGEST_MAX_DELAY': 'retry.max_delay',
        'DOCINGEST_BACKOFF_MULTIPLIER': 'retry.backoff_multiplier',
        'DOCINGEST_RETRY_JITTER': 'retry.jitter',

        'DOCINGEST_FAILURE_THRESHOLD': 'circuit_breaker.failure_threshold',
        'DOCINGEST_RESET_TIMEOUT': 'circuit_breaker.reset_timeout',

        'DOCINGEST_MAX_TOKENS': 'chunking.max_tokens',
        'DOCINGEST_OVERLAP_TOKENS': 'chunking.overlap_tokens',

        'DOCINGEST_MAX_HEAP_MB': 'memory.max_heap_mb',
        'DOCINGEST_BATCH_SIZE': 'memory.default_batch_size',

        'DOCINGEST_MAX_PROCESSING_TIME': 'processing.max_processing_time',
        'DOCINGEST_FETCH_TIMEOUT': 'processing.fetch_timeout',

        'DOCINGEST_STORAGE_BACKEND': 'storage.backend',
        'DOCINGEST_DATABASE_PATH': 'storage.database_path',

        'DOCINGEST_GRACEFUL_DEGRADATION': 'enable_graceful_degradation',
        'DOCINGEST_LOG_LEVEL': 'log_level',
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path
        self._config: Optional[IngestionConfig] = None

    def load_config(
        self,
        config_path: Optional[str] = None,
        from_env: bool = True
    ) -> IngestionConfig:
        """
        Load configuration from file and environment variables.

        Args:
            config_path: Path to YAML configuration file
            from_env: Whether to override with environment variables

        Returns:
            Validated configuration object
        """
        config_data: Dict[str, Any] = {}

        file_path = config_path or self.config_path
        if file_path:
            config_data = self._load_from_file(file_path)

        if from_env:
            config_data = self._merge_configs(config_data, self._load_from_environment())

        try:
            self._config = IngestionConfig(**config_data)
        except ValidationError as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

        logger.info("Configuration loaded successfully")
        return self._config

    def _load_from_file(self, file_path: str) -> Dict[str, Any]:
        path = Path(file_path).expanduser()
        if not path.exists():
            logger.warning(f"Configuration file not found: {file_path}")
            return {}

        with open(path, 'r') as f:
            config_data = yaml.safe_load(f)

        if config_data is not None and not isinstance(config_data, dict):
            raise ValueError(f"Configuration file {file_path} must contain a mapping")

        logger.info(f"Configuration loaded from {file_path}")
        return config_data or {}

    def _load_from_environment(self) -> Dict[str, Any]:
        env_config: Dict[str, Any] = {}
        for env_var, config_path in self.env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                self._set_nested_value(env_config, config_path, self._convert_env_value(value))
        return env_config

    def _convert_env_value(self, value: str) -> Union[str, int, float, bool]:
        """Convert environment variable string to appropriate type."""
        if value.lower() in ('true', 'false'):
            return value.lower() == 'true'

        try:
            if '.' in value:
                return float(value)
            return int(value)
        except ValueError:
            return value

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """Set a nested configuration value using dot notation."""
        keys = path.split('.')
        current = config
        for key in keys[:-1]:
            current = current.setdefault(key, {})
        current[keys[-1]] = value

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value
        return result

    def get_config(self) -> IngestionConfig:
        """Get the current configuration, loading defaults on first use."""
        if self._config is None:
            return self.load_config()
        return self._config

    def save_config(self, file_path: str) -> None:
        config = self.get_config()
        path = Path(file_path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(config.model_dump(), f, default_flow_style=False, indent=2)
        logger.info(f"Configuration saved to {file_path}")
