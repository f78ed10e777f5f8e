"""
Project endpoints: query generation and analysis
"""

import asyncio
import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request

from ..core.errors import LLMInvocationError, ProjectNotFoundError
from ..core.response_validator import sanitize_error_message
from ..core.state import worker_state
from ..models.schemas import AnalyzeRequest, AnalyzeResponse, GenerateResponse, RateLimiterStatus
from ..workers.batch_orchestrator import BatchOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["projects"])

# Errors that mean the model call itself failed after retries
UPSTREAM_ERRORS = (LLMInvocationError, httpx.HTTPError, asyncio.TimeoutError)


def get_orchestrator(request: Request) -> BatchOrchestrator:
    """
    Dependency injection to access the batch orchestrator from app.state

    Raises:
        HTTPException: 503 if the orchestrator is not initialized
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="Service in degraded mode - GEMINI_API_KEY not configured"
        )
    return orchestrator


@router.post("/projects/{project_id}/generate", response_model=GenerateResponse)
async def generate_queries(
    project_id: str,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator)
):
    """
    Generate the project's target number of queries

    Returns:
        GenerateResponse with the stored count and duration
    """
    try:
        result = await orchestrator.generate_project_queries(project_id)
        worker_state.increment_request_count()
        return result

    except ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except UPSTREAM_ERRORS as e:
        worker_state.increment_error_count()
        logger.error(f"Generation failed for project {project_id}: {sanitize_error_message(e)}")
        raise HTTPException(
            status_code=502,
            detail=f"Query generation failed: {sanitize_error_message(e)}"
        )

    except Exception as e:
        worker_state.increment_error_count()
        logger.error(f"Unexpected generation error for project {project_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Query generation failed")


@router.post("/projects/{project_id}/analyze", response_model=AnalyzeResponse)
async def analyze_queries(
    project_id: str,
    body: Optional[AnalyzeRequest] = None,
    orchestrator: BatchOrchestrator = Depends(get_orchestrator)
):
    """
    Analyze the project's pending queries

    Individual query failures are stored with fallback values and counted
    in error_count; they don't fail the request.
    """
    query_ids = body.query_ids if body else None

    try:
        result = await orchestrator.analyze_project(project_id, query_ids=query_ids)
        worker_state.increment_request_count()
        return result

    except ProjectNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    except Exception as e:
        worker_state.increment_error_count()
        logger.error(f"Analysis run failed for project {project_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Query analysis failed")


@router.get("/rate-limiter/status", response_model=RateLimiterStatus)
async def rate_limiter_status(orchestrator: BatchOrchestrator = Depends(get_orchestrator)):
    """Current queue length and requests admitted in the last minute"""
    return orchestrator.invoker.rate_limiter.get_status()
