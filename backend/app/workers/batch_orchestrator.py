"""
Batch orchestrator
Drives per-project query generation and analysis through the shared invoker
"""
import asyncio
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional

import structlog

from ..core.backoff import RetryConfig
from ..core.llm_orchestrator import GeminiInvoker
from ..core.response_validator import generate_fallback_result, sanitize_error_message
from ..core.telemetry import monitor_performance, queries_analyzed, queries_generated
from ..models.schemas import (
    AnalysisStatus,
    AnalyzeResponse,
    GeneratedQueryRecord,
    GenerateResponse,
    Project,
    ProjectStatus,
    QueryAnalysisResult,
    QueryRecord,
)
from ..prompts.query_prompts import build_additional_queries_prompt, build_generation_prompt
from ..storage.base import QueryStore

logger = structlog.get_logger(__name__)

DEFAULT_TARGET_QUERIES = 20
DEFAULT_BATCH_SIZE = 5
DEFAULT_INTER_BATCH_DELAY_SECONDS = 1.0
DEFAULT_MAX_SUPPLEMENTARY_GENERATIONS = 3
BRAND_SEPARATOR = ", "


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class BatchOrchestrator:
    """
    Runs many invocations for one project

    Analysis mode processes pending queries in fixed-size concurrent batches
    and never lets one item's failure abort the run: failed items are stored
    with a fallback result and status "error". Generation mode collects
    queries until the project's target count is reached (topping up with
    "N MORE" requests when the model comes back short), renumbers them
    1..N and inserts them in one operation.
    """

    def __init__(
        self,
        invoker: GeminiInvoker,
        store: QueryStore,
        retry_config: Optional[RetryConfig] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY_SECONDS,
        max_supplementary_generations: int = DEFAULT_MAX_SUPPLEMENTARY_GENERATIONS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.invoker = invoker
        self.store = store
        self.retry_config = retry_config or invoker.retry_config
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.max_supplementary_generations = max_supplementary_generations
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    @monitor_performance("analysis")
    async def analyze_project(
        self,
        project_id: str,
        query_ids: Optional[List[str]] = None
    ) -> AnalyzeResponse:
        """
        Analyze a project's pending queries.

        Args:
            project_id: Project to analyze
            query_ids: Optional record ids; only pending records among them are analyzed

        Returns:
            AnalyzeResponse with counts and success rate

        Raises:
            ProjectNotFoundError: Unknown project
        """
        with structlog.contextvars.bound_contextvars(
            project_id=project_id,
            correlation_id=str(uuid.uuid4())
        ):
            project = await self.store.get_project(project_id)
            queries = await self.store.list_queries(
                project_id,
                statuses=[AnalysisStatus.PENDING],
                ids=query_ids or None
            )

            if not queries:
                logger.info("No pending queries to analyze")
                return AnalyzeResponse(message="No pending queries to analyze")

            total_batches = (len(queries) + self.batch_size - 1) // self.batch_size
            logger.info(
                f"Starting analysis of {len(queries)} queries in {total_batches} batches",
                rate_limiter=self.invoker.rate_limiter.get_status()
            )

            analyzed = 0
            errors = 0
            for batch_number, start in enumerate(range(0, len(queries), self.batch_size), 1):
                batch = queries[start:start + self.batch_size]

                outcomes = await asyncio.gather(
                    *(self._analyze_one(record, project) for record in batch)
                )
                succeeded = sum(1 for ok in outcomes if ok)
                analyzed += succeeded
                errors += len(batch) - succeeded

                logger.info(
                    f"Batch {batch_number}/{total_batches} complete: {analyzed} analyzed, {errors} errors",
                    rate_limiter=self.invoker.rate_limiter.get_status()
                )

                if start + self.batch_size < len(queries):
                    await self._sleep(self.inter_batch_delay)

            remaining = await self.store.count_queries(
                project_id,
                statuses=[AnalysisStatus.PENDING, AnalysisStatus.ANALYZING]
            )
            if remaining == 0:
                await self.store.update_project(
                    project_id,
                    status=ProjectStatus.ANALYSIS_COMPLETE,
                    current_step=3
                )
                logger.info("All queries complete, project marked analysis_complete")
            else:
                logger.info(f"{remaining} queries still pending/analyzing")

            success_rate = round(analyzed / (analyzed + errors) * 100, 1)
            if errors:
                message = (
                    f"Successfully analyzed {analyzed} queries with {errors} errors "
                    f"({success_rate:.1f}% success rate)"
                )
            else:
                message = f"Successfully analyzed {analyzed} queries (100% success rate)"

            logger.info(f"Analysis complete: {message}")

            return AnalyzeResponse(
                analyzed_count=analyzed,
                error_count=errors,
                total_count=len(queries),
                success_rate=success_rate,
                message=message
            )

    async def _analyze_one(self, record: QueryRecord, project: Project) -> bool:
        """Analyze and persist one query; returns True on success, False on fallback"""
        start_time = time.time()
        attempts = {"count": 0}

        def on_attempt(number: int) -> None:
            attempts["count"] = number

        try:
            await self.store.update_query(
                record.id,
                analysis_status=AnalysisStatus.ANALYZING,
                metadata={"started_at": _utc_now(), "attempt_count": 0}
            )

            result = await self.invoker.analyze_query(
                record,
                project,
                retry_config=self.retry_config,
                on_attempt=on_attempt
            )

            duration_ms = int((time.time() - start_time) * 1000)
            await self._store_result(
                record,
                result,
                AnalysisStatus.COMPLETE,
                {
                    "completed_at": _utc_now(),
                    "duration_ms": duration_ms,
                    "attempt_count": attempts["count"],
                }
            )

            queries_analyzed.labels(status=AnalysisStatus.COMPLETE.value).inc()
            logger.info(
                f"Query {record.query_id} analyzed ({duration_ms}ms)",
                query_id=record.query_id
            )
            return True

        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            error_message = sanitize_error_message(e)
            logger.error(
                f"Query {record.query_id} failed after retries: {error_message}",
                query_id=record.query_id
            )

            try:
                await self._store_result(
                    record,
                    generate_fallback_result(record),
                    AnalysisStatus.ERROR,
                    {
                        "error_message": error_message,
                        "failed_at": _utc_now(),
                        "duration_ms": duration_ms,
                        "attempt_count": attempts["count"],
                    }
                )
            except Exception:
                # The run continues; the record stays in its last written state
                logger.exception(
                    f"Failed to store fallback result for query {record.query_id}",
                    query_id=record.query_id
                )

            queries_analyzed.labels(status=AnalysisStatus.ERROR.value).inc()
            return False

    async def _store_result(
        self,
        record: QueryRecord,
        result: QueryAnalysisResult,
        status: AnalysisStatus,
        metadata: dict
    ) -> None:
        await self.store.update_query(
            record.id,
            brand_mentions=BRAND_SEPARATOR.join(result.brand_mentions),
            source=result.source,
            query_type=result.query_type.value,
            query_category=result.query_category,
            analysis_status=status,
            metadata=metadata
        )

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    @monitor_performance("generation")
    async def generate_project_queries(self, project_id: str) -> GenerateResponse:
        """
        Generate the project's target number of queries and store them.

        Any failed Gemini call aborts the run, marks the project
        generation_failed and re-raises; nothing is inserted in that case.

        Raises:
            ProjectNotFoundError: Unknown project
            LLMInvocationError: Generation failed after retries
        """
        with structlog.contextvars.bound_contextvars(
            project_id=project_id,
            correlation_id=str(uuid.uuid4())
        ):
            start_time = time.time()
            project = await self.store.get_project(project_id)
            target = project.total_queries or DEFAULT_TARGET_QUERIES

            await self.store.update_project(project_id, status=ProjectStatus.GENERATING)
            logger.info(f"Generating {target} queries")

            try:
                collected = await self._collect_queries(project, target)
                final = self._finalize(collected, target)

                await self.store.insert_queries(project_id, final)
                await self.store.update_project(
                    project_id,
                    status=ProjectStatus.QUERIES_GENERATED,
                    total_queries=len(final),
                    current_step=2
                )
            except Exception as e:
                logger.error(
                    f"Query generation failed: {sanitize_error_message(e)}",
                    error_type=type(e).__name__
                )
                await self.store.update_project(project_id, status=ProjectStatus.GENERATION_FAILED)
                raise

            duration_ms = int((time.time() - start_time) * 1000)
            queries_generated.inc(len(final))
            logger.info(f"Generated {len(final)} queries in {duration_ms}ms")

            return GenerateResponse(count=len(final), duration_ms=duration_ms)

    async def _collect_queries(self, project: Project, target: int) -> List[GeneratedQueryRecord]:
        collected = list(
            await self.invoker.generate_queries(
                build_generation_prompt(project, target),
                retry_config=self.retry_config
            )
        )
        logger.info(f"Initial generation returned {len(collected)} of {target} queries")

        supplementary = 0
        while len(collected) < target and supplementary < self.max_supplementary_generations:
            supplementary += 1
            remaining = target - len(collected)
            logger.info(
                f"Requesting {remaining} more queries "
                f"(supplementary call {supplementary}/{self.max_supplementary_generations})"
            )

            more = await self.invoker.generate_queries(
                build_additional_queries_prompt(
                    project,
                    remaining,
                    [q.query_text for q in collected]
                ),
                retry_config=self.retry_config
            )
            collected.extend(more)

        if len(collected) < target:
            logger.warning(
                f"Only {len(collected)} of {target} queries generated after "
                f"{supplementary} supplementary calls"
            )

        return collected

    @staticmethod
    def _finalize(collected: List[GeneratedQueryRecord], target: int) -> List[GeneratedQueryRecord]:
        """Truncate to the target and renumber query_id from 1"""
        return [
            query.model_copy(update={"query_id": number})
            for number, query in enumerate(collected[:target], 1)
        ]
