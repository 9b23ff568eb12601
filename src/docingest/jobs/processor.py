"""
Job processor - drives one job through the ingestion pipeline.

Stages run strictly in order: validate -> fetch -> chunk -> embed -> index.
Every collaborator call goes through the resilience engine, the embed stage
is paced by the memory controller and degrades to smaller batches when the
primary path fails, and the whole pipeline races a per-job deadline.
``process_job`` never raises; every failure ends up in the returned
``JobResult`` and, for a job this call claimed, the job's terminal state.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from ..core.config import IngestionConfig
from ..core.errors import (
    EmbeddingError,
    ErrorContext,
    ErrorSeverity,
    IngestionError,
    JobError,
    StorageError,
    ValidationError,
    get_error_message,
)
from ..core.resilience import CircuitBreakerRegistry, DegradationStrategy, ResilienceEngine
from ..ingestion.chunking_engine import ContentChunker, DocumentChunk
from ..ingestion.collaborators import (
    EmbeddedChunk,
    Embedder,
    FetchedPage,
    Fetcher,
    FetchOptions,
    StorageResult,
    Validator,
    VectorIndex,
)
from ..monitoring.memory import AdaptiveParams, MemoryController
from ..monitoring.metrics import MetricsSink, record_safely
from .models import Job, JobResult, JobStatus
from .queue import JobQueue

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PipelineOutcome:
    success: bool
    total_chunks: int = 0
    errors: List[str] = field(default_factory=list)


class EmbeddingDegradation(DegradationStrategy[List[EmbeddedChunk]]):
    """Memory-paced batches first; half-size batches with partial success as fallback."""

    def __init__(
        self,
        processor: "JobProcessor",
        job: Job,
        chunks: Sequence[DocumentChunk],
        context: ErrorContext,
        errors: List[str]
    ):
        self.processor = processor
        self.job = job
        self.chunks = chunks
        self.context = context
        self.errors = errors

    async def primary(self) -> List[EmbeddedChunk]:
        return await self.processor._embed_adaptive(self.job, self.chunks, self.context)

    async def fallback(self) -> List[EmbeddedChunk]:
        return await self.processor._embed_fallback(self.job, self.chunks, self.context, self.errors)


class JobProcessor:
    """
    Multi-stage ingestion orchestrator.

    Collaborators are injected; see ``docingest.ingestion.collaborators`` for
    their interfaces.
    """

    def __init__(
        self,
        queue: JobQueue,
        validator: Validator,
        fetcher: Fetcher,
        embedder: Embedder,
        index: VectorIndex,
        chunker: Optional[ContentChunker] = None,
        engine: Optional[ResilienceEngine] = None,
        memory: Optional[MemoryController] = None,
        metrics: Optional[MetricsSink] = None,
        max_processing_time: float = 300.0,
        fetch_timeout: float = 30.0,
        embed_batch_size: Optional[int] = None,
        enable_progress_updates: bool = True
    ):
        self.queue = queue
        self.validator = validator
        self.fetcher = fetcher
        self.embedder = embedder
        self.index = index
        self.chunker = chunker or ContentChunker()
        self.engine = engine or ResilienceEngine(metrics=metrics)
        self.memory = memory or MemoryController(metrics=metrics)
        self.metrics = metrics
        self.max_processing_time = max_processing_time
        self.fetch_timeout = fetch_timeout
        self.embed_batch_size = embed_batch_size or self.memory.default_batch_size
        self.enable_progress_updates = enable_progress_updates

    @classmethod
    def from_config(
        cls,
        config: IngestionConfig,
        queue: JobQueue,
        validator: Validator,
        fetcher: Fetcher,
        embedder: Embedder,
        index: VectorIndex,
        metrics: Optional[MetricsSink] = None,
        breakers: Optional[CircuitBreakerRegistry] = None
    ) -> "JobProcessor":
        """Wire a processor from configuration; pass ``breakers`` to share them between processors."""
        engine = ResilienceEngine(
            retry_policy=config.retry.to_policy(),
            breakers=breakers or CircuitBreakerRegistry(config.circuit_breaker.to_config()),
            enable_graceful_degradation=config.enable_graceful_degradation,
            metrics=metrics
        )
        return cls(
            queue=queue,
            validator=validator,
            fetcher=fetcher,
            embedder=embedder,
            index=index,
            chunker=ContentChunker(
                max_tokens=config.chunking.max_tokens,
                overlap_tokens=config.chunking.overlap_tokens
            ),
            engine=engine,
            memory=config.memory.to_controller(config.processing.batch_delay, metrics),
            metrics=metrics,
            max_processing_time=config.processing.max_processing_time,
            fetch_timeout=config.processing.fetch_timeout
        )

    async def process_job(self, job_id: str) -> JobResult:
        """Run the pipeline for ``job_id`` and record its terminal state."""
        start_time = time.monotonic()
        context = ErrorContext(component="JobProcessor", operation="process_job", job_id=job_id)
        claimed = False

        try:
            job = await self.queue.get_status(job_id)
            if job is None:
                raise JobError(f"Job {job_id} not found", severity=ErrorSeverity.HIGH, context=context)

            context = context.derive(url=job.url)
            logger.info(f"Starting job {job_id} for {job.url}")

            # A job another worker already moved past QUEUED is not ours to finish
            await self.queue.update_status(job_id, JobStatus.PROCESSING)
            claimed = True
            outcome = await self._run_with_deadline(job, context, start_time)
            result = JobResult(
                success=outcome.success,
                total_chunks=outcome.total_chunks,
                errors=outcome.errors,
                processing_time=time.monotonic() - start_time
            )

        except Exception as e:
            response = self.engine.handle_error(e, context)
            result = JobResult(
                success=False,
                total_chunks=0,
                errors=[response.log_message],
                processing_time=time.monotonic() - start_time
            )

        if claimed:
            await self._complete(job_id, result)

        logger.info(
            f"Job {job_id} finished: success={result.success}, chunks={result.total_chunks}, "
            f"errors={len(result.errors)}, time={result.processing_time:.2f}s"
        )
        return result

    async def _run_with_deadline(
        self, job: Job, context: ErrorContext, start_time: float
    ) -> PipelineOutcome:
        task = asyncio.ensure_future(self._execute_pipeline(job, context))
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=self.max_processing_time)
        except asyncio.TimeoutError:
            # The pipeline keeps running in the background; its result is dropped
            task.add_done_callback(_discard_result)
            elapsed = time.monotonic() - start_time
            raise JobError(
                f"Job processing timeout after {elapsed:.1f}s",
                retryable=False,
                severity=ErrorSeverity.HIGH,
                context=context
            ) from None

    async def _execute_pipeline(self, job: Job, context: ErrorContext) -> PipelineOutcome:
        errors: List[str] = []

        try:
            # Stage 1
            validate_context = context.derive(component="validator", operation="validate_url")
            logger.info(f"Stage 1: Validating URL {job.url}")
            validation = await self._call(validate_context, lambda: self.validator.validate(job.url))
            if not validation.is_valid:
                raise ValidationError(
                    f"URL validation failed: {', '.join(validation.errors)}", validate_context
                )
            url = validation.sanitized_url or job.url

            # Stage 2
            fetch_context = context.derive(component="fetcher", operation="fetch_content", url=url)
            logger.info(f"Stage 2: Fetching content from {url}")
            page = await self._fetch(url, job, fetch_context)
            await self._update_progress(job.id, pages_processed=1)

            # Stage 3
            chunk_context = context.derive(component="chunker", operation="chunk_content", url=url)
            logger.info(f"Stage 3: Chunking {len(page.content)} characters")
            chunks = await self._call(chunk_context, lambda: self._chunk(page))
            if not chunks:
                raise JobError("No chunks created from content", context=chunk_context)
            await self._update_progress(job.id, chunks_created=len(chunks))

            # Stage 4
            embed_context = context.derive(component="embedder", operation="generate_embeddings")
            logger.info(f"Stage 4: Generating embeddings for {len(chunks)} chunks")
            embedded = await self.engine.with_fallback(
                EmbeddingDegradation(self, job, chunks, embed_context, errors), embed_context
            )
            await self._update_progress(job.id, chunks_embedded=len(embedded))

            # Stage 5
            index_context = context.derive(component="vector_index", operation="store_embeddings")
            logger.info(f"Stage 5: Storing {len(embedded)} embedded chunks")
            storage: StorageResult = await self._call(
                index_context, lambda: self.index.store_batch(embedded)
            )
            if storage.errors:
                errors.extend(storage.errors)
                logger.warning(
                    f"Storage completed with errors: {storage.stored} stored, "
                    f"{storage.updated} updated, {storage.failed} failed"
                )
            if storage.persisted == 0:
                raise StorageError(
                    f"No embedded chunks were stored ({storage.failed} failed)",
                    retryable=False,
                    context=index_context
                )

            logger.info(
                f"Pipeline completed for job {job.id}: {storage.persisted} chunks persisted "
                f"({storage.stored} stored, {storage.updated} updated)"
            )
            return PipelineOutcome(success=True, total_chunks=storage.persisted, errors=errors)

        except Exception as e:
            response = self.engine.handle_error(e, context)
            errors.append(response.log_message)
            return PipelineOutcome(success=False, total_chunks=0, errors=errors)

    async def _fetch(self, url: str, job: Job, context: ErrorContext) -> FetchedPage:
        options = FetchOptions(
            timeout=self.fetch_timeout,
            respect_robots=job.options.respect_robots
        )

        async def fetch() -> FetchedPage:
            start_time = time.monotonic()
            success = False
            try:
                page = await self.fetcher.fetch(url, options)
                success = True
                return page
            finally:
                record_safely(
                    self.metrics, "record_api_call", "fetcher", "fetch",
                    time.monotonic() - start_time, success
                )

        return await self._call(context, fetch)

    async def _chunk(self, page: FetchedPage) -> List[DocumentChunk]:
        return self.chunker.chunk(page.content, page.metadata)

    async def _embed_adaptive(
        self, job: Job, chunks: Sequence[DocumentChunk], context: ErrorContext
    ) -> List[EmbeddedChunk]:
        embedded: List[EmbeddedChunk] = []
        batch_number = 0

        async def embed_batch(batch: Sequence[DocumentChunk], params: AdaptiveParams) -> int:
            nonlocal batch_number
            batch_number += 1
            batch_context = context.derive(
                batch_number=batch_number,
                metadata={**context.metadata, 'batch_size': len(batch),
                          'memory_status': params.memory_status.value}
            )
            try:
                result = await self._embed_batch(batch, batch_context)
            except IngestionError as e:
                raise EmbeddingError(
                    f"Embedding batch {batch_number} failed: {e.message}",
                    retryable=False,
                    context=batch_context,
                    cause=e
                ) from e
            embedded.extend(result)
            await self._update_progress(job.id, chunks_embedded=len(embedded))
            return len(result)

        await self.memory.run_adaptive(
            "generate_embeddings", chunks, embed_batch, initial_batch_size=self.embed_batch_size
        )

        if not embedded:
            raise EmbeddingError("Embedding produced no vectors", retryable=False, context=context)
        return embedded

    async def _embed_fallback(
        self,
        job: Job,
        chunks: Sequence[DocumentChunk],
        context: ErrorContext,
        errors: List[str]
    ) -> List[EmbeddedChunk]:
        batch_size = max(1, self.embed_batch_size // 2)
        total_batches = (len(chunks) + batch_size - 1) // batch_size
        logger.warning(
            f"Using fallback embedding with batch size {batch_size} "
            f"for {len(chunks)} chunks"
        )

        embedded: List[EmbeddedChunk] = []
        batch_errors: List[str] = []

        for batch_number, start in enumerate(range(0, len(chunks), batch_size), start=1):
            batch = chunks[start:start + batch_size]
            batch_context = context.derive(batch_number=batch_number)
            try:
                result = await self._embed_batch(batch, batch_context)
            except IngestionError as e:
                message = f"Fallback batch {batch_number} embedding failed: {e.message}"
                batch_errors.append(message)
                logger.error(f"{message} ({batch_number}/{total_batches})")
                continue

            embedded.extend(result)
            await self._update_progress(job.id, chunks_embedded=len(embedded))

        if not embedded:
            raise EmbeddingError(
                f"All fallback embedding batches failed: {'; '.join(batch_errors)}",
                retryable=False,
                severity=ErrorSeverity.HIGH,
                context=context
            )

        if batch_errors:
            errors.extend(batch_errors)
            logger.warning(
                f"Fallback embedding completed with partial success: "
                f"{len(embedded)}/{len(chunks)} chunks"
            )
        return embedded

    async def _embed_batch(
        self, batch: Sequence[DocumentChunk], context: ErrorContext
    ) -> List[EmbeddedChunk]:
        async def embed() -> List[EmbeddedChunk]:
            start_time = time.monotonic()
            success = False
            try:
                result = await self.embedder.embed(batch)
                success = True
                return result
            finally:
                duration = time.monotonic() - start_time
                record_safely(self.metrics, "record_api_call", "embedder", "embed", duration, success)
                if success:
                    record_safely(self.metrics, "record_processing_speed", "embedding", len(batch), duration)

        return await self._call(context, embed)

    async def _call(self, context: ErrorContext, operation: Callable[[], Awaitable[T]]) -> T:
        """Run a collaborator call under the resilience engine, logging failed attempts to progress."""
        async def attempt() -> T:
            try:
                return await operation()
            except Exception as e:
                await self._update_progress(
                    context.job_id,
                    errors=[f"{context.operation} attempt failed: {get_error_message(e)}"]
                )
                raise

        return await self.engine.execute_with_retry(attempt, context)

    async def _update_progress(self, job_id: Optional[str], **changes: Any) -> None:
        if not self.enable_progress_updates or job_id is None:
            return
        try:
            await self.queue.update_progress(job_id, **changes)
        except Exception as e:
            logger.error(f"Failed to update progress for job {job_id}: {e}")

    async def _complete(self, job_id: str, result: JobResult) -> None:
        try:
            await self.queue.complete_job(
                job_id, result.success, result.errors, result.total_chunks
            )
        except Exception as e:
            logger.error(f"Failed to record completion of job {job_id}: {e}")


def _discard_result(task: "asyncio.Future[Any]") -> None:
    if task.cancelled():
        return
    exception = task.exception()
    if exception is not None:
        logger.debug(f"Pipeline finished after its deadline with error: {exception}")
    else:
        logger.debug("Pipeline finished after its deadline; result discarded")
