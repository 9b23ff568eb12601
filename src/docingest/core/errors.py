"""
Error taxonomy for the ingestion pipeline.

Typed errors carry a stable code, category, severity and retry flag so the
resilience engine can decide what to do with them. Failures that arrive as
untyped exceptions are classified with a best-effort pattern table.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_MS = 5000


class ErrorCategory(Enum):
    """Pipeline stage or failure family an error belongs to."""

    VALIDATION = "VALIDATION"
    SCRAPING = "SCRAPING"
    EMBEDDING = "EMBEDDING"
    STORAGE = "STORAGE"
    JOB = "JOB"
    NETWORK = "NETWORK"
    RATE_LIMIT = "RATE_LIMIT"
    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class ErrorContext:
    """Where an error happened: component, operation and pipeline coordinates."""

    component: str
    operation: str
    job_id: Optional[str] = None
    url: Optional[str] = None
    chunk_id: Optional[str] = None
    batch_number: Optional[int] = None
    attempt: Optional[int] = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def derive(self, **changes: Any) -> "ErrorContext":
        """Copy of this context with some fields replaced."""
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "component": self.component,
            "operation": self.operation,
            "job_id": self.job_id,
            "url": self.url,
            "chunk_id": self.chunk_id,
            "batch_number": self.batch_number,
            "attempt": self.attempt,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ErrorResponse:
    """Categorized response produced once per handled error."""

    can_retry: bool
    retry_after_ms: Optional[int]
    user_message: str
    log_message: str
    error_code: str
    category: ErrorCategory
    severity: ErrorSeverity
    suggested_action: str


class IngestionError(Exception):
    """Base class for every error raised by the ingestion pipeline."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        retryable: bool = False,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.severity = severity
        self.retryable = retryable
        self.context = context
        self.cause = cause
        self.timestamp = datetime.now()
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Structured form for logging."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(IngestionError):
    """Input rejected before any work was attempted. Never retryable."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            "VALIDATION_ERROR",
            ErrorCategory.VALIDATION,
            ErrorSeverity.LOW,
            False,
            context,
            cause,
        )


class ScrapingError(IngestionError):
    def __init__(
        self,
        message: str,
        retryable: bool = True,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(
            message, "SCRAPING_ERROR", ErrorCategory.SCRAPING, severity, retryable, context, cause
        )
        self.status_code = status_code


class EmbeddingError(IngestionError):
    def __init__(
        self,
        message: str,
        retryable: bool = True,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message, "EMBEDDING_ERROR", ErrorCategory.EMBEDDING, severity, retryable, context, cause
        )


class StorageError(IngestionError):
    def __init__(
        self,
        message: str,
        retryable: bool = True,
        severity: ErrorSeverity = ErrorSeverity.HIGH,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message, "STORAGE_ERROR", ErrorCategory.STORAGE, severity, retryable, context, cause
        )


class JobError(IngestionError):
    def __init__(
        self,
        message: str,
        retryable: bool = False,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message, "JOB_ERROR", ErrorCategory.JOB, severity, retryable, context, cause
        )


class NetworkError(IngestionError):
    def __init__(
        self,
        message: str,
        retryable: bool = True,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message, "NETWORK_ERROR", ErrorCategory.NETWORK, severity, retryable, context, cause
        )


class RateLimitError(IngestionError):
    """Upstream throttling. Always retryable, after ``retry_after_ms``."""

    def __init__(
        self,
        message: str,
        retry_after_ms: Optional[int] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            "RATE_LIMIT_ERROR",
            ErrorCategory.RATE_LIMIT,
            ErrorSeverity.LOW,
            True,
            context,
            cause,
        )
        if retry_after_ms is None:
            source = str(cause) if cause is not None else message
            retry_after_ms = extract_retry_after(source)
        self.retry_after_ms = retry_after_ms

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after_ms"] = self.retry_after_ms
        return data


class CircuitBreakerError(IngestionError):
    """A component's breaker refused the call. Retrying immediately is pointless."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message,
            "CIRCUIT_BREAKER_ERROR",
            ErrorCategory.CIRCUIT_BREAKER,
            ErrorSeverity.HIGH,
            False,
            context,
            cause,
        )


_RETRY_AFTER_PATTERN = re.compile(r"retry.*?(\d+)", re.IGNORECASE)


def extract_retry_after(message: str) -> int:
    """Milliseconds to wait, read from a 'retry after N' style message (N in seconds)."""
    match = _RETRY_AFTER_PATTERN.search(message or "")
    if match:
        return int(match.group(1)) * 1000
    return DEFAULT_RETRY_AFTER_MS


@dataclass
class ErrorPattern:
    """Pattern for matching untyped errors to a category."""

    error_types: Tuple[type, ...]
    keywords: List[str]
    category: ErrorCategory

    def matches(self, error: BaseException) -> bool:
        """Check if error matches this pattern."""
        if self.error_types and isinstance(error, self.error_types):
            return True

        error_message = str(error).lower()
        return any(keyword in error_message for keyword in self.keywords)


@dataclass(frozen=True)
class ErrorClassification:
    category: ErrorCategory
    severity: ErrorSeverity
    retryable: bool


_TRANSPORT_ERRORS: Tuple[type, ...] = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    httpx.TransportError,
)

# Order matters: first match wins.
_CATEGORY_PATTERNS: List[ErrorPattern] = [
    ErrorPattern((), ["validation", "invalid"], ErrorCategory.VALIDATION),
    ErrorPattern(_TRANSPORT_ERRORS, ["network", "timeout", "connection"], ErrorCategory.NETWORK),
    ErrorPattern((), ["rate limit", "429"], ErrorCategory.RATE_LIMIT),
    ErrorPattern((), ["database", "storage"], ErrorCategory.STORAGE),
    ErrorPattern((), ["embedding"], ErrorCategory.EMBEDDING),
    ErrorPattern((), ["scraping"], ErrorCategory.SCRAPING),
]

_RETRYABLE_KEYWORDS = [
    "timeout",
    "network",
    "connection",
    "rate limit",
    "econnreset",
    "enotfound",
    "503",
    "502",
    "504",
]

_SEVERITY_KEYWORDS: List[Tuple[List[str], ErrorSeverity]] = [
    (["critical", "fatal"], ErrorSeverity.CRITICAL),
    (["database", "storage"], ErrorSeverity.HIGH),
    (["network", "timeout"], ErrorSeverity.MEDIUM),
]


def categorize_error(error: BaseException) -> ErrorCategory:
    if isinstance(error, IngestionError):
        return error.category
    for pattern in _CATEGORY_PATTERNS:
        if pattern.matches(error):
            return pattern.category
    return ErrorCategory.JOB


def get_error_severity(error: BaseException) -> ErrorSeverity:
    if isinstance(error, IngestionError):
        return error.severity
    if isinstance(error, _TRANSPORT_ERRORS):
        return ErrorSeverity.MEDIUM
    message = str(error).lower()
    for keywords, severity in _SEVERITY_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return severity
    return ErrorSeverity.LOW


def is_retryable_error(error: BaseException) -> bool:
    if isinstance(error, IngestionError):
        return error.retryable
    if isinstance(error, _TRANSPORT_ERRORS):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in _RETRYABLE_KEYWORDS)


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Map any exception to a (category, severity, retryable) triple.

    Typed taxonomy errors are trusted as-is. Anything else goes through the
    substring heuristics, which can misfire on messages that merely mention
    a keyword, so collaborators should raise typed errors where they can.
    """
    if isinstance(error, IngestionError):
        return ErrorClassification(error.category, error.severity, error.retryable)

    category = categorize_error(error)
    severity = get_error_severity(error)
    retryable = is_retryable_error(error)

    if category == ErrorCategory.VALIDATION:
        severity = ErrorSeverity.LOW
        retryable = False
    elif category == ErrorCategory.RATE_LIMIT:
        retryable = True

    return ErrorClassification(category, severity, retryable)


def get_error_message(error: BaseException) -> str:
    message = str(error)
    return message if message else type(error).__name__


def normalize_error(
    error: BaseException, context: Optional[ErrorContext] = None
) -> IngestionError:
    """Wrap an untyped exception in the taxonomy error for its classified category."""
    if isinstance(error, IngestionError):
        return error

    message = get_error_message(error)
    classification = classify_error(error)
    category = classification.category

    if category == ErrorCategory.VALIDATION:
        return ValidationError(message, context, error)
    if category == ErrorCategory.RATE_LIMIT:
        return RateLimitError(message, None, context, error)
    if category == ErrorCategory.STORAGE:
        return StorageError(
            message, classification.retryable, ErrorSeverity.HIGH, context, error
        )

    return IngestionError(
        message,
        f"{category.value}_ERROR",
        category,
        classification.severity,
        classification.retryable,
        context,
        error,
    )
