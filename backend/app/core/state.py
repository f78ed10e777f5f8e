"""
Per-process application state
One Gemini client, one rate limiter, one invoker, one store and one batch
orchestrator are built at startup and shared by every request.
"""

import os
import logging
from typing import Optional
from dataclasses import dataclass
from datetime import datetime, timezone

from ..config.settings import Settings
from .backoff import RetryConfig
from .gemini_client import GeminiClient
from .llm_orchestrator import GeminiInvoker
from .rate_limiter import GeminiRateLimiter, RateLimitPolicy
from ..storage.base import QueryStore
from ..storage.memory import InMemoryQueryStore
from ..workers.batch_orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class WorkerState:
    """
    Manages per-process application state

    Each server worker process gets its own instance, and therefore its own
    rate limiter. The per-minute ceiling holds per process.
    """

    worker_id: Optional[int] = None
    client: Optional[GeminiClient] = None
    rate_limiter: Optional[GeminiRateLimiter] = None
    invoker: Optional[GeminiInvoker] = None
    store: Optional[QueryStore] = None
    orchestrator: Optional[BatchOrchestrator] = None
    initialized: bool = False
    initialization_time: Optional[datetime] = None
    request_count: int = 0
    error_count: int = 0

    def __post_init__(self):
        """Initialize worker ID from environment"""
        if self.worker_id is None:
            self.worker_id = os.getpid()

    def initialize(self, settings: Settings, store: Optional[QueryStore] = None) -> bool:
        """
        Build the shared components from settings

        Args:
            settings: Validated application settings
            store: Storage backend; defaults to an in-memory store

        Returns:
            True if initialization succeeded, False otherwise
        """
        if self.initialized:
            logger.info(
                f"Worker {self.worker_id} already initialized, skipping",
                extra={"worker_pid": self.worker_id}
            )
            return True

        try:
            retry_config = RetryConfig(
                max_retries=settings.max_retries,
                initial_delay_ms=settings.initial_delay_ms,
                max_delay_ms=settings.max_delay_ms,
                backoff_multiplier=settings.backoff_multiplier
            )
            policy = RateLimitPolicy(
                requests_per_minute=settings.requests_per_minute,
                tokens_per_minute=settings.tokens_per_minute,
                requests_per_day=settings.requests_per_day
            )

            self.client = GeminiClient(
                api_key=settings.gemini_api_key,
                base_url=settings.gemini_base_url,
                timeout=settings.request_timeout_seconds
            )
            self.rate_limiter = GeminiRateLimiter(policy)
            self.invoker = GeminiInvoker(
                client=self.client,
                rate_limiter=self.rate_limiter,
                retry_config=retry_config,
                request_timeout=settings.request_timeout_seconds,
                analysis_model=settings.gemini_analysis_model,
                generation_model=settings.gemini_generation_model
            )
            self.store = store or InMemoryQueryStore()
            self.orchestrator = BatchOrchestrator(
                invoker=self.invoker,
                store=self.store,
                retry_config=retry_config,
                batch_size=settings.analysis_batch_size,
                inter_batch_delay=settings.inter_batch_delay_seconds,
                max_supplementary_generations=settings.max_supplementary_generations
            )
        except ValueError as e:
            # Configuration errors are not retryable
            logger.error(
                f"Worker {self.worker_id}: Invalid configuration - {e}",
                extra={"worker_pid": self.worker_id}
            )
            return False

        self.initialized = True
        self.initialization_time = datetime.now(timezone.utc)

        logger.info(
            f"Worker {self.worker_id} initialized successfully",
            extra={
                "worker_pid": self.worker_id,
                "initialization_time": self.initialization_time.isoformat(),
                "requests_per_minute": settings.requests_per_minute,
                "store": type(self.store).__name__
            }
        )
        return True

    async def cleanup(self) -> None:
        """
        Cleanup worker resources on shutdown

        Stops the rate limiter's admission loop and closes the HTTP client
        """
        if not self.initialized:
            return

        logger.info(
            f"Cleaning up worker {self.worker_id}",
            extra={
                "worker_pid": self.worker_id,
                "requests_processed": self.request_count,
                "errors_encountered": self.error_count
            }
        )

        if self.rate_limiter is not None:
            await self.rate_limiter.close()

        if self.client is not None:
            try:
                await self.client.aclose()
                logger.info(
                    f"Worker {self.worker_id}: Gemini client closed",
                    extra={"worker_pid": self.worker_id}
                )
            except Exception as e:
                logger.warning(
                    f"Worker {self.worker_id}: Error closing Gemini client - {e}",
                    extra={"worker_pid": self.worker_id}
                )

        # Clear references
        self.client = None
        self.rate_limiter = None
        self.invoker = None
        self.store = None
        self.orchestrator = None
        self.initialized = False

        logger.info(
            f"Worker {self.worker_id} cleanup complete",
            extra={"worker_pid": self.worker_id}
        )

    def increment_request_count(self) -> None:
        """Track successful request"""
        self.request_count += 1

    def increment_error_count(self) -> None:
        """Track failed request"""
        self.error_count += 1

    def get_stats(self) -> dict:
        """
        Get worker statistics

        Returns:
            Dict with worker statistics
        """
        uptime = None
        if self.initialization_time:
            uptime = (datetime.now(timezone.utc) - self.initialization_time).total_seconds()

        return {
            "worker_id": self.worker_id,
            "initialized": self.initialized,
            "initialization_time": self.initialization_time.isoformat() if self.initialization_time else None,
            "uptime_seconds": uptime,
            "requests_processed": self.request_count,
            "errors_encountered": self.error_count,
            "orchestrator_ready": self.orchestrator is not None
        }


# Global worker state instance
# Each worker process will have its own instance of this object
worker_state = WorkerState()
