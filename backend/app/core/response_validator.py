"""
Response validation and sanitization for Gemini JSON output

The model is unreliable rather than hostile: it wraps JSON in markdown
fences, returns comma-separated strings instead of arrays, and paraphrases
enum values. Everything here recovers as much structure as possible and
defaults the rest, so callers always get a fully typed result or a
classified error (ResponseParseError / ResponseValidationError).
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Union

from .errors import ResponseParseError, ResponseValidationError
from ..models.schemas import (
    DEFAULT_QUERY_CATEGORY,
    NO_BRANDS_IDENTIFIED,
    UNKNOWN_SOURCE,
    VALID_QUERY_CATEGORIES,
    VALID_QUERY_FORMATS,
    VALID_QUERY_TYPES,
    GeneratedQueryRecord,
    QueryAnalysisResult,
    QueryFormat,
    QueryType,
)

logger = logging.getLogger(__name__)

MAX_BRAND_MENTIONS = 20
MAX_SOURCE_LENGTH = 500
MAX_TARGET_AUDIENCE_LENGTH = 200
MAX_ERROR_MESSAGE_LENGTH = 500
DEFAULT_TARGET_AUDIENCE = "General audience"
FALLBACK_BRAND_MENTION = "Analysis unavailable"
FALLBACK_SOURCE = "Unable to determine"

_OPENING_FENCE = re.compile(r"^\s*```(?:json)?[ \t]*\n?", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\n?[ \t]*```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a wrapping markdown ``` / ```json fence; backticks inside the body are kept"""
    text = _OPENING_FENCE.sub("", text, count=1)
    return _CLOSING_FENCE.sub("", text, count=1).strip()


def _find_balanced(text: str, opener: str, closer: str) -> Optional[str]:
    """Return the first balanced opener...closer span, ignoring brackets inside strings"""
    start = text.find(opener)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return text[start:idx + 1]

    return None


def extract_json_object(response: str) -> str:
    """Strip fences and return the first balanced {...} (or the cleaned text if none)"""
    cleaned = strip_code_fences(response)
    return _find_balanced(cleaned, "{", "}") or cleaned


def extract_json_array(response: str) -> str:
    """Strip fences and return the first balanced [...] (or the cleaned text if none)"""
    cleaned = strip_code_fences(response)
    return _find_balanced(cleaned, "[", "]") or cleaned


def safe_json_parse(text: str) -> Any:
    """Parse JSON, raising ResponseParseError with a preview on failure"""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise ResponseParseError(
            f"Failed to parse JSON: {str(text)[:200]}... (Error: {e})"
        ) from e


def _truncate(value: str, limit: int) -> str:
    # rstrip keeps sanitization idempotent when the cut lands on whitespace
    return value[:limit].rstrip()


def coerce_query_type(value: Any) -> str:
    """Exact match, else 'service'/'aligned' substring means Service-Aligned"""
    if value in VALID_QUERY_TYPES:
        return value
    if isinstance(value, str):
        normalized = value.lower()
        if "service" in normalized or "aligned" in normalized:
            return QueryType.SERVICE_ALIGNED.value
    return QueryType.EDUCATIONAL.value


def coerce_query_category(value: Any) -> str:
    """Exact, case-insensitive, then bidirectional substring match; else the first category"""
    if not isinstance(value, str):
        return DEFAULT_QUERY_CATEGORY

    normalized = value.strip()
    if normalized in VALID_QUERY_CATEGORIES:
        return normalized

    lowered = normalized.lower()
    if not lowered:
        return DEFAULT_QUERY_CATEGORY

    for category in VALID_QUERY_CATEGORIES:
        if category.lower() == lowered:
            return category
    for category in VALID_QUERY_CATEGORIES:
        candidate = category.lower()
        if candidate in lowered or lowered in candidate:
            return category

    return DEFAULT_QUERY_CATEGORY


def coerce_query_format(value: Any) -> str:
    """Exact match, else 'keyword' substring means Keyword phrases"""
    if value in VALID_QUERY_FORMATS:
        return value
    if isinstance(value, str) and "keyword" in value.lower():
        return QueryFormat.KEYWORD.value
    return QueryFormat.NATURAL_LANGUAGE.value


def _coerce_brand_mentions(value: Any) -> List[str]:
    if isinstance(value, list):
        brands = [b.strip() for b in value if isinstance(b, str) and b.strip()]
    elif isinstance(value, str):
        brands = [b.strip() for b in value.split(",") if b.strip()]
    else:
        brands = []

    brands = brands[:MAX_BRAND_MENTIONS]
    return brands or [NO_BRANDS_IDENTIFIED]


def _coerce_source(value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return _truncate(value.strip(), MAX_SOURCE_LENGTH)
    return UNKNOWN_SOURCE


def _as_mapping(parsed: Any) -> Dict[str, Any]:
    if isinstance(parsed, dict):
        return parsed
    # Some responses wrap the object in a single-element array
    if isinstance(parsed, list):
        for item in parsed:
            if isinstance(item, dict):
                return item
    return {}


def sanitize_analysis(raw: Union[str, Dict[str, Any]]) -> QueryAnalysisResult:
    """
    Coerce a raw analysis response into a QueryAnalysisResult

    Args:
        raw: Response text (possibly fenced or surrounded by prose) or an already parsed object

    Returns:
        Fully populated QueryAnalysisResult

    Raises:
        ResponseParseError: raw is text that does not contain valid JSON
    """
    parsed = raw
    if isinstance(raw, str):
        parsed = safe_json_parse(extract_json_object(raw))

    data = _as_mapping(parsed)
    if not data:
        logger.debug("Analysis response had no usable object, using defaults")

    return QueryAnalysisResult(
        brand_mentions=_coerce_brand_mentions(data.get("brand_mentions")),
        source=_coerce_source(data.get("source")),
        query_type=coerce_query_type(data.get("query_type")),
        query_category=coerce_query_category(data.get("query_category")),
    )


def sanitize_generated_query(raw: Any, query_id: int = 1) -> Optional[GeneratedQueryRecord]:
    """
    Coerce one generated query; returns None only when query_text is missing or blank
    """
    if not isinstance(raw, dict):
        return None

    query_text = raw.get("query_text")
    if not isinstance(query_text, str) or not query_text.strip():
        return None

    audience = raw.get("target_audience")
    if isinstance(audience, str) and audience.strip():
        audience = _truncate(audience.strip(), MAX_TARGET_AUDIENCE_LENGTH)
    else:
        audience = DEFAULT_TARGET_AUDIENCE

    return GeneratedQueryRecord(
        query_id=query_id,
        query_text=query_text.strip(),
        query_type=coerce_query_type(raw.get("query_type")),
        query_category=coerce_query_category(raw.get("query_category")),
        query_format=coerce_query_format(raw.get("query_format")),
        target_audience=audience,
    )


def _unwrap_query_list(parsed: Any) -> List[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        if isinstance(parsed.get("queries"), list):
            return parsed["queries"]
        if "query_text" in parsed:
            return [parsed]
        for value in parsed.values():
            if isinstance(value, list):
                return value
    raise ResponseValidationError("Query validation failed: response is not a JSON array of queries")


def _parse_query_text(raw: str) -> Any:
    cleaned = strip_code_fences(raw)
    array_start = cleaned.find("[")
    object_start = cleaned.find("{")

    if array_start != -1 and (object_start == -1 or array_start < object_start):
        return safe_json_parse(extract_json_array(cleaned))
    return safe_json_parse(extract_json_object(cleaned))


def sanitize_generated_queries(raw: Union[str, List[Any], Dict[str, Any]]) -> List[GeneratedQueryRecord]:
    """
    Coerce a batch of generated queries, dropping items without query text

    Accepts a top-level JSON array or an object with a "queries" array.

    Raises:
        ResponseParseError: raw text is not valid JSON
        ResponseValidationError: zero items survive sanitization
    """
    parsed = _parse_query_text(raw) if isinstance(raw, str) else raw
    items = _unwrap_query_list(parsed)

    records: List[GeneratedQueryRecord] = []
    for item in items:
        record = sanitize_generated_query(item, query_id=len(records) + 1)
        if record is not None:
            records.append(record)

    dropped = len(items) - len(records)
    if dropped:
        logger.warning(f"Dropped {dropped} of {len(items)} generated queries without query text")

    if not records:
        raise ResponseValidationError(
            f"Query validation failed: none of {len(items)} generated items had query text"
        )

    return records


def has_minimum_fields(result: QueryAnalysisResult) -> bool:
    """Check that every required analysis field is populated"""
    return (
        len(result.brand_mentions) > 0
        and bool(result.source)
        and bool(result.query_type)
        and bool(result.query_category)
    )


def generate_fallback_result(original_query: Any) -> QueryAnalysisResult:
    """
    Safe result for a query whose analysis failed every retry

    Keeps the query's own type/category (coerced into the enums) as the
    safest available classification.
    """
    if isinstance(original_query, dict):
        query_type = original_query.get("query_type")
        query_category = original_query.get("query_category")
    else:
        query_type = getattr(original_query, "query_type", None)
        query_category = getattr(original_query, "query_category", None)

    return QueryAnalysisResult(
        brand_mentions=[FALLBACK_BRAND_MENTION],
        source=FALLBACK_SOURCE,
        query_type=coerce_query_type(query_type),
        query_category=coerce_query_category(query_category),
    )


def sanitize_error_message(error: Any) -> str:
    """Error text capped for logs and stored metadata"""
    try:
        message = str(error)
    except Exception:
        message = ""
    if not message and isinstance(error, BaseException):
        # asyncio.TimeoutError and friends stringify to ""
        message = type(error).__name__
    return message[:MAX_ERROR_MESSAGE_LENGTH]
