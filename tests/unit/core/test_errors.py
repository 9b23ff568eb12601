"""
Unit tests for the error taxonomy and the fallback classifier.
"""

import asyncio

import httpx
import pytest

from docingest.core.errors import (
    CircuitBreakerError,
    EmbeddingError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    IngestionError,
    JobError,
    NetworkError,
    RateLimitError,
    ScrapingError,
    StorageError,
    ValidationError,
    categorize_error,
    classify_error,
    extract_retry_after,
    get_error_message,
    get_error_severity,
    is_retryable_error,
    normalize_error,
)


class TestErrorDefaults:
    """Each taxonomy error carries its own code, category, severity and retry flag."""

    @pytest.mark.parametrize("error, code, category, severity, retryable", [
        (ValidationError("bad"), "VALIDATION_ERROR", ErrorCategory.VALIDATION, ErrorSeverity.LOW, False),
        (ScrapingError("bad"), "SCRAPING_ERROR", ErrorCategory.SCRAPING, ErrorSeverity.MEDIUM, True),
        (EmbeddingError("bad"), "EMBEDDING_ERROR", ErrorCategory.EMBEDDING, ErrorSeverity.MEDIUM, True),
        (StorageError("bad"), "STORAGE_ERROR", ErrorCategory.STORAGE, ErrorSeverity.HIGH, True),
        (JobError("bad"), "JOB_ERROR", ErrorCategory.JOB, ErrorSeverity.MEDIUM, False),
        (NetworkError("bad"), "NETWORK_ERROR", ErrorCategory.NETWORK, ErrorSeverity.MEDIUM, True),
        (RateLimitError("bad"), "RATE_LIMIT_ERROR", ErrorCategory.RATE_LIMIT, ErrorSeverity.LOW, True),
        (CircuitBreakerError("bad"), "CIRCUIT_BREAKER_ERROR", ErrorCategory.CIRCUIT_BREAKER, ErrorSeverity.HIGH, False),
    ])
    def test_defaults(self, error, code, category, severity, retryable):
        assert isinstance(error, IngestionError)
        assert error.code == code
        assert error.category == category
        assert error.severity == severity
        assert error.retryable is retryable

    def test_cause_is_chained(self):
        cause = ConnectionError("reset by peer")
        error = ScrapingError("fetch failed", cause=cause)

        assert error.cause is cause
        assert error.__cause__ is cause

    def test_to_dict_includes_context(self):
        context = ErrorContext(component="fetcher", operation="fetch_content", job_id="job-1", attempt=2)
        error = StorageError("disk full", retryable=False, context=context)

        data = error.to_dict()

        assert data["name"] == "StorageError"
        assert data["code"] == "STORAGE_ERROR"
        assert data["retryable"] is False
        assert data["context"]["job_id"] == "job-1"
        assert data["context"]["attempt"] == 2

    def test_context_derive_leaves_original_untouched(self):
        context = ErrorContext(component="embedder", operation="embed")
        derived = context.derive(batch_number=3)

        assert derived.batch_number == 3
        assert context.batch_number is None
        assert derived.component == "embedder"


class TestRateLimit:
    def test_retry_after_from_message(self):
        assert extract_retry_after("Rate limited, retry after 12 seconds") == 12000

    def test_retry_after_case_insensitive(self):
        assert extract_retry_after("RETRY-AFTER: 3") == 3000

    def test_retry_after_default(self):
        assert extract_retry_after("slow down") == 5000
        assert extract_retry_after("") == 5000

    def test_rate_limit_error_reads_cause(self):
        error = RateLimitError("throttled", cause=Exception("please retry in 7s"))
        assert error.retry_after_ms == 7000

    def test_explicit_retry_after_wins(self):
        error = RateLimitError("retry after 9", retry_after_ms=250)
        assert error.retry_after_ms == 250
        assert error.to_dict()["retry_after_ms"] == 250


class TestClassifier:
    """Untyped exceptions are classified by type, then by message keywords."""

    def test_typed_errors_are_trusted(self):
        error = ScrapingError("timeout while fetching", retryable=False)
        classification = classify_error(error)

        assert classification.category == ErrorCategory.SCRAPING
        assert classification.retryable is False

    @pytest.mark.parametrize("error", [
        asyncio.TimeoutError(),
        TimeoutError("timed out"),
        ConnectionError("refused"),
        httpx.ConnectError("connect failed"),
    ])
    def test_transport_errors_are_retryable_network(self, error):
        classification = classify_error(error)

        assert classification.category == ErrorCategory.NETWORK
        assert classification.severity == ErrorSeverity.MEDIUM
        assert classification.retryable is True

    def test_validation_keywords_never_retry(self):
        classification = classify_error(ValueError("invalid timeout value"))

        assert classification.category == ErrorCategory.VALIDATION
        assert classification.severity == ErrorSeverity.LOW
        assert classification.retryable is False

    def test_rate_limit_forces_retry(self):
        classification = classify_error(RuntimeError("HTTP 429 Too Many Requests"))

        assert classification.category == ErrorCategory.RATE_LIMIT
        assert classification.retryable is True

    def test_storage_keywords(self):
        error = RuntimeError("database is locked")

        assert categorize_error(error) == ErrorCategory.STORAGE
        assert get_error_severity(error) == ErrorSeverity.HIGH
        assert is_retryable_error(error) is False

    def test_gateway_codes_are_retryable(self):
        assert is_retryable_error(RuntimeError("upstream returned 503")) is True
        assert is_retryable_error(RuntimeError("ECONNRESET")) is True

    def test_fatal_is_critical(self):
        assert get_error_severity(RuntimeError("fatal: out of file descriptors")) == ErrorSeverity.CRITICAL

    def test_unknown_defaults_to_job(self):
        classification = classify_error(KeyError("missing"))

        assert classification.category == ErrorCategory.JOB
        assert classification.severity == ErrorSeverity.LOW
        assert classification.retryable is False


class TestNormalizeError:
    def test_passes_taxonomy_errors_through(self):
        error = JobError("boom")
        assert normalize_error(error) is error

    def test_wraps_untyped_error(self):
        context = ErrorContext(component="embedder", operation="embed")
        cause = RuntimeError("embedding service returned garbage")

        error = normalize_error(cause, context)

        assert error.category == ErrorCategory.EMBEDDING
        assert error.code == "EMBEDDING_ERROR"
        assert error.context is context
        assert error.cause is cause

    def test_wraps_validation_error(self):
        error = normalize_error(ValueError("invalid input"))
        assert isinstance(error, ValidationError)

    def test_empty_message_uses_type_name(self):
        assert get_error_message(asyncio.TimeoutError()) == "TimeoutError"
