"""
Prometheus metrics for Gemini calls, the rate limiter and batch runs
"""

import time
import inspect
import logging
from functools import wraps

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST
)
from fastapi import Response

logger = logging.getLogger(__name__)


# Prometheus metrics
llm_requests = Counter(
    'aeo_llm_requests_total',
    'Total Gemini API attempts',
    ['call_type', 'status']
)

llm_retries = Counter(
    'aeo_llm_retries_total',
    'Retries scheduled after a failed Gemini attempt',
    ['call_type', 'error_type']
)

llm_latency = Histogram(
    'aeo_llm_request_duration_seconds',
    'Gemini API attempt latency',
    ['call_type'],
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120)
)

rate_limiter_queue_length = Gauge(
    'aeo_rate_limiter_queue_length',
    'Calls waiting for rate limiter admission'
)

rate_limiter_waits = Counter(
    'aeo_rate_limiter_waits_total',
    'Times the rate limiter paused for the sliding window'
)

queries_analyzed = Counter(
    'aeo_queries_analyzed_total',
    'Queries that finished analysis',
    ['status']
)

queries_generated = Counter(
    'aeo_queries_generated_total',
    'Queries persisted by generation runs'
)

stage_duration = Histogram(
    'aeo_stage_duration_seconds',
    'Time spent per orchestrator stage',
    ['stage'],
    buckets=(1, 5, 10, 30, 60, 120, 300, 600, 1800)
)

stage_errors = Counter(
    'aeo_stage_errors_total',
    'Orchestrator stage failures',
    ['stage', 'error_type']
)


def monitor_performance(stage: str):
    """
    Decorator to time an orchestrator stage and count its failures.

    Args:
        stage: Stage name used as the metric label
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                stage_errors.labels(stage=stage, error_type=type(e).__name__).inc()
                raise
            finally:
                stage_duration.labels(stage=stage).observe(time.time() - start_time)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return func(*args, **kwargs)
            except Exception as e:
                stage_errors.labels(stage=stage, error_type=type(e).__name__).inc()
                raise
            finally:
                stage_duration.labels(stage=stage).observe(time.time() - start_time)

        return async_wrapper if inspect.iscoroutinefunction(func) else sync_wrapper

    return decorator


async def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Returns:
        Metrics in Prometheus format
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )
