"""
Pydantic models for API requests/responses, LLM results and query state
"""
from pydantic import BaseModel, Field
from typing import List, Dict, Optional, Any
from enum import Enum


class QueryType(str, Enum):
    """Query intent"""
    EDUCATIONAL = "Educational"
    SERVICE_ALIGNED = "Service-Aligned"


class QueryFormat(str, Enum):
    """Phrasing style of a generated query"""
    NATURAL_LANGUAGE = "Natural-language questions"
    KEYWORD = "Keyword phrases"


class AnalysisStatus(str, Enum):
    """Per-query analysis states"""
    PENDING = "pending"
    ANALYZING = "analyzing"
    COMPLETE = "complete"
    ERROR = "error"


class ProjectStatus(str, Enum):
    """Project processing states"""
    DRAFT = "draft"
    GENERATING = "generating"
    QUERIES_GENERATED = "queries_generated"
    GENERATION_FAILED = "generation_failed"
    ANALYSIS_COMPLETE = "analysis_complete"


VALID_QUERY_TYPES = tuple(t.value for t in QueryType)
VALID_QUERY_FORMATS = tuple(f.value for f in QueryFormat)

# Order matters: the first entry is the default category
VALID_QUERY_CATEGORIES = (
    "Industry monitoring",
    "Competitor benchmarking",
    "Operational training",
    "Foundational understanding",
    "Real-world learning examples",
    "Educational — people-focused",
    "Trend explanation",
    "Pain-point focused — commercial intent",
    "Product or vendor-related — lead intent",
    "Decision-stage — ready to buy or engage",
)

DEFAULT_QUERY_CATEGORY = VALID_QUERY_CATEGORIES[0]
NO_BRANDS_IDENTIFIED = "No specific brands identified"
UNKNOWN_SOURCE = "Unknown"


class QueryAnalysisResult(BaseModel):
    """Sanitized analysis of a single query. Always fully populated."""
    brand_mentions: List[str] = Field(min_length=1, max_length=20, description="Brands likely mentioned in answers")
    source: str = Field(min_length=1, max_length=500, description="Platform or source that answers the query")
    query_type: QueryType
    query_category: str = Field(description="One of VALID_QUERY_CATEGORIES")


class GeneratedQueryRecord(BaseModel):
    """A single generated query; query_id is assigned after validation"""
    query_id: int = Field(default=1, ge=1)
    query_text: str = Field(min_length=1)
    query_type: QueryType = QueryType.EDUCATIONAL
    query_category: str = DEFAULT_QUERY_CATEGORY
    query_format: QueryFormat = QueryFormat.NATURAL_LANGUAGE
    target_audience: str = Field(default="General audience", max_length=200)


class RetryAttemptRecord(BaseModel):
    """Diagnostic record of one failed attempt (not persisted)"""
    attempt: int
    total_attempts: int
    delay: int = Field(default=0, description="Milliseconds slept before the next attempt")
    error_type: str
    error_message: str = Field(max_length=500)


class Project(BaseModel):
    """Project configuration consumed by prompts and the orchestrator"""
    id: str
    company_url: Optional[str] = None
    competitor_urls: List[str] = []
    audience: List[str] = []
    themes: Optional[str] = None
    total_queries: Optional[int] = Field(default=20, ge=1)
    educational_ratio: Optional[int] = Field(default=50, ge=0, le=100)
    service_ratio: Optional[int] = Field(default=50, ge=0, le=100)
    query_mix_type: Optional[str] = None
    query_format: Optional[str] = None
    manual_queries: List[str] = []
    status: ProjectStatus = ProjectStatus.DRAFT
    current_step: int = 1


class QueryRecord(BaseModel):
    """A stored query and its analysis state"""
    id: str
    project_id: str
    query_id: int
    query_text: str
    query_type: Optional[str] = None
    query_category: Optional[str] = None
    query_format: Optional[str] = None
    target_audience: Optional[str] = None
    brand_mentions: Optional[str] = None
    source: Optional[str] = None
    analysis_status: AnalysisStatus = AnalysisStatus.PENDING
    metadata: Dict[str, Any] = {}


class AnalyzeRequest(BaseModel):
    """Request body for project analysis"""
    query_ids: Optional[List[str]] = Field(None, description="Restrict analysis to these query record ids")


class AnalyzeResponse(BaseModel):
    """Result of an analysis run"""
    analyzed_count: int = 0
    error_count: int = 0
    total_count: int = 0
    success_rate: float = 0.0
    message: str = ""


class GenerateResponse(BaseModel):
    """Result of a generation run"""
    count: int
    duration_ms: int


class RateLimiterStatus(BaseModel):
    """Snapshot of the shared rate limiter"""
    queue_length: int
    requests_in_last_minute: int
    requests_per_minute: int
