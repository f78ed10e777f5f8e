"""
Gemini invoker with bounded retries, classified errors and backoff
Every call goes through the shared rate limiter; the invoker never returns a
partial result. Fallback synthesis is the batch orchestrator's job.
"""

import asyncio
import random
import time
from collections import deque
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

import sentry_sdk
import structlog

from .backoff import DEFAULT_RETRY_CONFIG, RetryConfig, calculate_retry_delay
from .errors import classify_error, is_retryable
from .gemini_client import (
    ANALYSIS_GENERATION_CONFIG,
    QUERY_GENERATION_CONFIG,
    GeminiClient,
    GenerationConfig,
)
from .rate_limiter import GeminiRateLimiter
from .response_validator import (
    sanitize_analysis,
    sanitize_error_message,
    sanitize_generated_queries,
)
from .telemetry import llm_latency, llm_requests, llm_retries
from ..models.schemas import (
    GeneratedQueryRecord,
    Project,
    QueryAnalysisResult,
    QueryRecord,
    RetryAttemptRecord,
)
from ..prompts.query_prompts import build_analysis_prompt

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Recent successful call durations kept for the stats snapshot
PROCESSING_TIMES_WINDOW = 1000


class GeminiInvoker:
    """
    Runs one logical Gemini call: prompt, request, parse/validate, and on
    failure classify, back off, and try again up to max_retries times.
    """

    def __init__(
        self,
        client: GeminiClient,
        rate_limiter: GeminiRateLimiter,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        request_timeout: float = 60.0,
        analysis_model: Optional[str] = None,
        generation_model: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None
    ):
        """
        Args:
            client: HTTP client holding the API key
            rate_limiter: Process-wide limiter shared with every other call site
            retry_config: Default retry policy when a call doesn't pass its own
            request_timeout: Seconds allowed for a single attempt
            analysis_model: Model override for analysis calls
            generation_model: Model override for generation calls
            sleep: Backoff sleep, injectable for tests
            rng: Jitter source, injectable for tests
        """
        self.client = client
        self.rate_limiter = rate_limiter
        self.retry_config = retry_config
        self.request_timeout = request_timeout
        self.analysis_model = analysis_model
        self.generation_model = generation_model
        self._sleep = sleep
        self._rng = rng or random.Random()

        # Statistics tracking
        self.stats = {
            'total_calls': 0,
            'successful_calls': 0,
            'failed_calls': 0,
            'total_attempts': 0,
            'total_retries': 0,
            'non_retryable_failures': 0,
            'errors_by_type': {},
            'processing_times': deque(maxlen=PROCESSING_TIMES_WINDOW)
        }

        logger.info(
            "Initialized Gemini invoker",
            max_retries=retry_config.max_retries,
            request_timeout=request_timeout
        )

    async def invoke(
        self,
        prompt_builder: Callable[[], str],
        parser: Callable[[str], T],
        generation_config: GenerationConfig = ANALYSIS_GENERATION_CONFIG,
        retry_config: Optional[RetryConfig] = None,
        call_type: str = "analysis",
        model: Optional[str] = None,
        on_attempt: Optional[Callable[[int], None]] = None
    ) -> T:
        """
        Call Gemini until the parser accepts a response

        Args:
            prompt_builder: Builds the prompt; called once per attempt
            parser: Validates/sanitizes the text payload, raising on failure
            generation_config: Sampling parameters
            retry_config: Per-call retry policy (defaults to the invoker's)
            call_type: Label for logs and metrics
            model: Model override
            on_attempt: Called with the 1-based attempt number before each attempt

        Returns:
            The parser's result from the first successful attempt

        Raises:
            The last attempt's exception once attempts are exhausted, or the
            first non-retryable exception immediately
        """
        config = retry_config or self.retry_config
        last_error: Optional[BaseException] = None
        history: List[RetryAttemptRecord] = []
        call_start = time.time()
        self.stats['total_calls'] += 1

        for attempt in range(config.max_retries + 1):
            attempt_start = time.time()
            self.stats['total_attempts'] += 1
            if on_attempt is not None:
                on_attempt(attempt + 1)
            try:
                prompt = prompt_builder()

                logger.info(
                    f"Calling Gemini (attempt {attempt + 1}/{config.total_attempts})",
                    call_type=call_type,
                    prompt_length=len(prompt)
                )

                text = await asyncio.wait_for(
                    self.client.generate_content(prompt, generation_config, model=model),
                    timeout=self.request_timeout
                )
                result = parser(text)

            except Exception as e:
                last_error = e
                error_class = classify_error(e)
                message = sanitize_error_message(e)

                llm_requests.labels(call_type=call_type, status="error").inc()
                errors_by_type = self.stats['errors_by_type']
                errors_by_type[error_class.value] = errors_by_type.get(error_class.value, 0) + 1

                record = RetryAttemptRecord(
                    attempt=attempt,
                    total_attempts=config.total_attempts,
                    error_type=error_class.value,
                    error_message=message
                )
                history.append(record)

                if attempt >= config.max_retries:
                    logger.error(
                        f"All {config.total_attempts} Gemini attempts failed",
                        call_type=call_type,
                        attempts=[r.model_dump() for r in history]
                    )
                    break

                if not is_retryable(error_class):
                    self.stats['failed_calls'] += 1
                    self.stats['non_retryable_failures'] += 1
                    logger.error(
                        "Non-retryable Gemini error",
                        call_type=call_type,
                        error_type=error_class.value,
                        error=message
                    )
                    self._report_failure(e, call_type, history)
                    raise

                delay_ms = calculate_retry_delay(attempt, config, error_class, self._rng)
                record.delay = delay_ms
                self.stats['total_retries'] += 1
                llm_retries.labels(call_type=call_type, error_type=error_class.value).inc()

                logger.warning(
                    f"Retry {attempt + 1}/{config.max_retries} after {delay_ms}ms",
                    call_type=call_type,
                    error_type=error_class.value,
                    delay_ms=delay_ms,
                    error=message[:100]
                )

                await self._sleep(delay_ms / 1000)

            else:
                llm_requests.labels(call_type=call_type, status="success").inc()
                self.stats['successful_calls'] += 1
                self.stats['processing_times'].append(time.time() - call_start)

                if attempt > 0:
                    logger.info(
                        f"Gemini call succeeded after {attempt} {'retry' if attempt == 1 else 'retries'}",
                        call_type=call_type
                    )
                return result

            finally:
                llm_latency.labels(call_type=call_type).observe(time.time() - attempt_start)

        # Exhausted all attempts
        self.stats['failed_calls'] += 1
        self._report_failure(last_error, call_type, history)
        raise last_error

    def _report_failure(
        self,
        error: BaseException,
        call_type: str,
        history: List[RetryAttemptRecord]
    ) -> None:
        """Send a final invocation failure to Sentry; no-op when Sentry isn't initialized"""
        with sentry_sdk.new_scope() as scope:
            scope.set_context("gemini_call", {
                "call_type": call_type,
                "attempts": [r.model_dump() for r in history]
            })
            scope.set_context("invoker_stats", self._get_stats_snapshot())
            sentry_sdk.capture_exception(error)

    async def analyze_query(
        self,
        query: QueryRecord,
        project: Project,
        retry_config: Optional[RetryConfig] = None,
        on_attempt: Optional[Callable[[int], None]] = None
    ) -> QueryAnalysisResult:
        """Analyze one query for brand mentions and sources, through the rate limiter"""
        return await self.rate_limiter.throttle(
            lambda: self.invoke(
                lambda: build_analysis_prompt(query, project),
                sanitize_analysis,
                generation_config=ANALYSIS_GENERATION_CONFIG,
                retry_config=retry_config,
                call_type="analysis",
                model=self.analysis_model,
                on_attempt=on_attempt
            )
        )

    async def generate_queries(
        self,
        prompt: str,
        retry_config: Optional[RetryConfig] = None
    ) -> List[GeneratedQueryRecord]:
        """Generate one batch of queries from a prompt, through the rate limiter"""
        return await self.rate_limiter.throttle(
            lambda: self.invoke(
                lambda: prompt,
                sanitize_generated_queries,
                generation_config=QUERY_GENERATION_CONFIG,
                retry_config=retry_config,
                call_type="generation",
                model=self.generation_model
            )
        )

    def _get_stats_snapshot(self) -> Dict:
        """Get current statistics snapshot"""
        stats = self.stats.copy()
        stats['errors_by_type'] = dict(self.stats['errors_by_type'])

        # Calculate derived metrics
        if stats['total_calls'] > 0:
            stats['success_rate'] = stats['successful_calls'] / stats['total_calls']
            stats['average_retries'] = stats['total_retries'] / stats['total_calls']

        times = stats['processing_times']
        if times:
            stats['avg_processing_time'] = sum(times) / len(times)
            stats['p95_processing_time'] = sorted(times)[int(len(times) * 0.95)] if len(times) > 1 else times[0]

        # Remove detailed arrays from snapshot
        stats.pop('processing_times', None)

        return stats

    def get_stats(self) -> Dict:
        """Get processing statistics"""
        return self._get_stats_snapshot()
