"""
Resilience engine: retry with exponential backoff, per-component circuit
breakers and graceful degradation.

Every call made through ``ResilienceEngine.execute_with_retry`` is guarded by
the breaker for ``context.component``, retried while the classified error is
retryable, and either returns a value or raises a JOB-category wrapper. The
only exception to the wrapping rule is a breaker refusal, which surfaces as
``CircuitBreakerError`` so callers can tell "dependency is down" apart from
"operation kept failing".
"""

import asyncio
import logging
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from ..monitoring.metrics import MetricsSink, record_safely
from .errors import (
    CircuitBreakerError,
    ErrorCategory,
    ErrorContext,
    ErrorResponse,
    ErrorSeverity,
    JobError,
    RateLimitError,
    classify_error,
    get_error_message,
    normalize_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    """Retry settings. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    def compute_delay(self, attempt: int) -> float:
        """
        Delay before the retry that follows failure number ``attempt + 1``.

        ``min(base_delay * backoff_multiplier ** attempt, max_delay)``, scaled
        by a uniform factor in [0.5, 1.0] when jitter is enabled.
        """
        delay = min(self.base_delay * (self.backoff_multiplier ** attempt), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        return delay


class wait_policy_backoff(wait_base):
    """tenacity wait strategy driven by a ``RetryPolicy``."""

    def __init__(self, policy: RetryPolicy):
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        return self.policy.compute_delay(retry_state.attempt_number - 1)


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerState:
    """Breaker record for one component."""

    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    last_failure_time: Optional[float] = None
    total_failures: int = 0
    total_requests: int = 0
    probe_in_flight: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "consecutive_failures": self.consecutive_failures,
            "last_failure_time": self.last_failure_time,
            "total_failures": self.total_failures,
            "total_requests": self.total_requests,
        }


class CircuitBreakerRegistry:
    """
    Circuit breakers keyed by component name.

    Breakers are created lazily and shared by every job that talks to the
    same component, so all read-modify-write goes through one lock.
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: Dict[str, CircuitBreakerState] = {}
        self._lock = asyncio.Lock()

    def _get_or_create(self, component: str) -> CircuitBreakerState:
        breaker = self._breakers.get(component)
        if breaker is None:
            breaker = CircuitBreakerState()
            self._breakers[component] = breaker
        return breaker

    async def before_call(self, component: str, context: Optional[ErrorContext] = None) -> None:
        """Admit or refuse a call. Raises ``CircuitBreakerError`` on refusal."""
        async with self._lock:
            breaker = self._get_or_create(component)

            if breaker.state == CircuitState.OPEN:
                elapsed = self._clock() - (breaker.last_failure_time or 0.0)
                if elapsed < self.config.reset_timeout:
                    raise CircuitBreakerError(
                        f"Circuit breaker is open for component: {component}", context
                    )
                # consecutive_failures is kept so a failed probe re-opens at once
                breaker.state = CircuitState.HALF_OPEN
                breaker.probe_in_flight = True
                logger.info(f"Circuit breaker transitioning to half-open for {component}")
                return

            if breaker.state == CircuitState.HALF_OPEN:
                if breaker.probe_in_flight:
                    raise CircuitBreakerError(
                        f"Circuit breaker is half-open for component: {component}, probe in progress",
                        context,
                    )
                breaker.probe_in_flight = True

    async def record_success(self, component: str) -> None:
        async with self._lock:
            breaker = self._get_or_create(component)
            breaker.total_requests += 1
            breaker.probe_in_flight = False
            if breaker.state != CircuitState.CLOSED:
                logger.info(f"Circuit breaker closed after successful operation for {component}")
            breaker.state = CircuitState.CLOSED
            breaker.consecutive_failures = 0

    async def record_failure(self, component: str) -> None:
        async with self._lock:
            breaker = self._get_or_create(component)
            breaker.total_requests += 1
            breaker.total_failures += 1
            breaker.consecutive_failures += 1
            breaker.last_failure_time = self._clock()
            breaker.probe_in_flight = False

            if breaker.state == CircuitState.OPEN:
                return
            if (
                breaker.state == CircuitState.HALF_OPEN
                or breaker.consecutive_failures >= self.config.failure_threshold
            ):
                breaker.state = CircuitState.OPEN
                logger.warning(
                    f"Circuit breaker opened for {component} after "
                    f"{breaker.consecutive_failures} consecutive failures "
                    f"(threshold {self.config.failure_threshold})"
                )

    def release_half_open_slot(self, component: str) -> None:
        """Give up a half-open trial slot without recording an outcome."""
        breaker = self._breakers.get(component)
        if breaker is not None:
            breaker.probe_in_flight = False

    def get_state(self, component: str) -> Optional[CircuitBreakerState]:
        return self._breakers.get(component)

    def get_status(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.to_dict() for name, breaker in self._breakers.items()}

    async def reset(self, component: str) -> bool:
        async with self._lock:
            if component not in self._breakers:
                return False
            self._breakers[component] = CircuitBreakerState()
            logger.info(f"Circuit breaker reset for {component}")
            return True


class DegradationStrategy(ABC, Generic[T]):
    """A primary path and the reduced-quality path to use when it fails."""

    @abstractmethod
    async def primary(self) -> T:
        ...

    @abstractmethod
    async def fallback(self) -> T:
        ...


class CallableDegradation(DegradationStrategy[T]):
    """Degradation strategy built from two coroutine functions."""

    def __init__(
        self,
        primary: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]],
    ):
        self._primary = primary
        self._fallback = fallback

    async def primary(self) -> T:
        return await self._primary()

    async def fallback(self) -> T:
        return await self._fallback()


USER_MESSAGES = {
    ErrorCategory.VALIDATION: "The provided URL or input is invalid. Please check and try again.",
    ErrorCategory.SCRAPING: (
        "Unable to access or scrape the webpage. The site may be unavailable "
        "or blocking automated access."
    ),
    ErrorCategory.EMBEDDING: (
        "Failed to generate embeddings for the content. This may be a temporary service issue."
    ),
    ErrorCategory.STORAGE: "Failed to save the processed content. Please try again.",
    ErrorCategory.NETWORK: "Network connectivity issue. Please check your connection and try again.",
    ErrorCategory.RATE_LIMIT: "Service rate limit exceeded. The system will retry automatically.",
    ErrorCategory.CIRCUIT_BREAKER: (
        "Service is temporarily unavailable due to repeated failures. Please try again later."
    ),
    ErrorCategory.JOB: "An unexpected error occurred during processing. Please try again.",
}

SUGGESTED_ACTIONS = {
    ErrorCategory.VALIDATION: "Verify the URL format and ensure it points to accessible content",
    ErrorCategory.SCRAPING: "Check if the website is accessible and not blocking automated requests",
    ErrorCategory.EMBEDDING: "Verify the embedding service status and credentials",
    ErrorCategory.STORAGE: "Check storage connectivity and available space",
    ErrorCategory.NETWORK: "Verify network connectivity and firewall settings",
    ErrorCategory.RATE_LIMIT: "Wait for rate limit to reset, retries will happen automatically",
    ErrorCategory.CIRCUIT_BREAKER: "Wait for service to recover, then try again",
    ErrorCategory.JOB: "Review logs for detailed error information",
}

_SEVERITY_LOG_LEVELS = {
    ErrorSeverity.CRITICAL: logging.CRITICAL,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


class ResilienceEngine:
    """
    Retry, circuit breaking and graceful degradation around external calls.

    The breaker registry, sleep function and metrics sink are injected so
    that several engines can share one registry and tests can run without
    real delays.
    """

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        breakers: Optional[CircuitBreakerRegistry] = None,
        enable_graceful_degradation: bool = True,
        metrics: Optional[MetricsSink] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.breakers = breakers or CircuitBreakerRegistry()
        self.enable_graceful_degradation = enable_graceful_degradation
        self.metrics = metrics
        self._sleep = sleep

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext,
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """
        Run ``operation`` with breaker checks and retries.

        Raises:
            CircuitBreakerError: the component's breaker refused the call
            JobError: the operation failed and will not be retried further
        """
        policy = policy or self.retry_policy
        component = context.component
        attempts = 0

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"{component}.{context.operation} attempt {retry_state.attempt_number} failed: "
                f"{error}. Retrying in {delay:.2f}s "
                f"({policy.max_retries + 1 - retry_state.attempt_number} attempts left)"
            )

        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(policy.max_retries + 1),
            wait=wait_policy_backoff(policy),
            retry=retry_if_exception(
                lambda e: isinstance(e, Exception)
                and not isinstance(e, CircuitBreakerError)
                and classify_error(e).retryable
            ),
            before_sleep=log_retry,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    await self.breakers.before_call(component, context.derive(attempt=attempts))
                    try:
                        result = await operation()
                    except Exception:
                        await self.breakers.record_failure(component)
                        raise
                    except BaseException:
                        # Cancelled, not failed: free a half-open trial slot only
                        self.breakers.release_half_open_slot(component)
                        raise
                    await self.breakers.record_success(component)
        except CircuitBreakerError:
            raise
        except Exception as e:
            final_error = JobError(
                f"Operation failed after {attempts} attempts: {get_error_message(e)}",
                retryable=False,
                severity=ErrorSeverity.HIGH,
                context=context.derive(attempt=attempts),
                cause=e,
            )
            raise final_error from e

        if attempts > 1:
            logger.info(
                f"{component}.{context.operation} succeeded after retry "
                f"(total attempts: {attempts})"
            )
            record_safely(
                self.metrics,
                "record",
                "operation_recovered",
                1,
                "count",
                {"component": component, "operation": context.operation, "attempts": str(attempts)},
            )

        return result

    async def with_fallback(
        self, strategy: DegradationStrategy[T], context: ErrorContext
    ) -> T:
        """
        Run the strategy's primary path, falling back on failure.

        If the fallback fails too, the primary error is re-raised.
        """
        if not self.enable_graceful_degradation:
            return await strategy.primary()

        try:
            return await strategy.primary()
        except Exception as primary_error:
            logger.warning(
                f"Primary operation {context.component}.{context.operation} failed, "
                f"attempting graceful degradation: {primary_error}"
            )
            try:
                result = await strategy.fallback()
            except Exception as fallback_error:
                logger.error(
                    f"Both primary and fallback operations failed for "
                    f"{context.component}.{context.operation}: "
                    f"primary={primary_error}, fallback={fallback_error}"
                )
                raise primary_error
            logger.info(f"Graceful degradation successful for {context.component}.{context.operation}")
            return result

    def handle_error(self, error: BaseException, context: Optional[ErrorContext] = None) -> ErrorResponse:
        """Classify, log and describe an error."""
        ingestion_error = normalize_error(error, context)
        context = ingestion_error.context or context

        location = f"{context.component}.{context.operation}" if context else "unknown"
        job = f" job={context.job_id}" if context and context.job_id else ""
        attempt = f" attempt={context.attempt}" if context and context.attempt else ""
        logger.log(
            _SEVERITY_LOG_LEVELS[ingestion_error.severity],
            f"[{ingestion_error.code}] {location}{job}{attempt}: {ingestion_error.message}",
        )

        retry_after_ms = None
        if isinstance(ingestion_error, RateLimitError):
            retry_after_ms = ingestion_error.retry_after_ms
        elif ingestion_error.retryable:
            attempt_index = (context.attempt or 1) - 1 if context else 0
            retry_after_ms = int(self.retry_policy.compute_delay(attempt_index) * 1000)

        return ErrorResponse(
            can_retry=ingestion_error.retryable,
            retry_after_ms=retry_after_ms,
            user_message=USER_MESSAGES.get(ingestion_error.category, USER_MESSAGES[ErrorCategory.JOB]),
            log_message=ingestion_error.message,
            error_code=ingestion_error.code,
            category=ingestion_error.category,
            severity=ingestion_error.severity,
            suggested_action=SUGGESTED_ACTIONS.get(
                ingestion_error.category, SUGGESTED_ACTIONS[ErrorCategory.JOB]
            ),
        )

    def get_circuit_breaker_status(self) -> Dict[str, Dict[str, Any]]:
        return self.breakers.get_status()

    async def reset_circuit_breaker(self, component: str) -> bool:
        return await self.breakers.reset(component)
