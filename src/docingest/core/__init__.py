"""
Error taxonomy, resilience engine and configuration.
"""

from .config import ConfigManager, IngestionConfig
from .errors import (
    CircuitBreakerError,
    EmbeddingError,
    ErrorCategory,
    ErrorContext,
    ErrorResponse,
    ErrorSeverity,
    IngestionError,
    JobError,
    NetworkError,
    RateLimitError,
    ScrapingError,
    StorageError,
    ValidationError,
    classify_error,
)
from .resilience import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    ResilienceEngine,
    RetryPolicy,
)

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorSeverity",
    "ErrorContext",
    "ErrorResponse",
    "IngestionError",
    "ValidationError",
    "ScrapingError",
    "EmbeddingError",
    "StorageError",
    "JobError",
    "NetworkError",
    "RateLimitError",
    "CircuitBreakerError",
    "classify_error",
    # Resilience
    "RetryPolicy",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ResilienceEngine",
    # Configuration
    "ConfigManager",
    "IngestionConfig",
]
