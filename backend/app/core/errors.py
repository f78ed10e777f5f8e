"""
Error taxonomy and classification for Gemini calls

Typed errors raised by the HTTP client and the response validator carry their
own error class. Anything else (third-party exceptions, plain RuntimeErrors
from callers) is classified by transport exception type, and finally by
matching substrings of the lower-cased message. The substring rules are
brittle by nature; they remain only for errors that carry no structure.
"""

import asyncio
from enum import Enum
from typing import Optional

import httpx


class ErrorClass(str, Enum):
    """Failure categories driving retry decisions"""
    RATE_LIMIT = "RATE_LIMIT"
    PARSE_ERROR = "PARSE_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    UNKNOWN = "UNKNOWN"


# Unknown errors are treated as fatal. Transient unknown failures would
# arguably deserve a retry; kept conservative until the upstream error
# contract is better understood.
RETRYABLE_ERROR_CLASSES = frozenset({
    ErrorClass.RATE_LIMIT,
    ErrorClass.PARSE_ERROR,
    ErrorClass.NETWORK_ERROR,
    ErrorClass.VALIDATION_ERROR,
})


class LLMInvocationError(Exception):
    """Base class for errors raised while calling the model"""

    error_class: Optional[ErrorClass] = None


class GeminiAPIError(LLMInvocationError):
    """Non-2xx response from the Gemini endpoint"""

    def __init__(self, status_code: int, reason: str = "", body: str = ""):
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"Gemini API error: {status_code} {reason} - {body}".strip())

    @property
    def error_class(self) -> Optional[ErrorClass]:
        if self.status_code == 429:
            return ErrorClass.RATE_LIMIT
        if self.status_code in (401, 403):
            return ErrorClass.AUTH_ERROR
        if self.status_code == 408 or self.status_code >= 500:
            return ErrorClass.NETWORK_ERROR
        return None


class EmptyResponseError(LLMInvocationError):
    """Response contained no text payload (e.g. blocked or truncated candidate)"""

    error_class = ErrorClass.VALIDATION_ERROR


class ResponseParseError(LLMInvocationError):
    """Payload could not be parsed as JSON"""

    error_class = ErrorClass.PARSE_ERROR


class ResponseValidationError(LLMInvocationError):
    """Payload parsed but nothing usable survived sanitization"""

    error_class = ErrorClass.VALIDATION_ERROR


class ProjectNotFoundError(LookupError):
    """Requested project does not exist in the store"""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


def classify_message(message: str) -> ErrorClass:
    """Classify an error purely from its message text"""
    message = (message or "").lower()

    if "429" in message or "rate limit" in message or "quota" in message:
        return ErrorClass.RATE_LIMIT
    if "parse" in message or "json" in message or "invalid" in message:
        return ErrorClass.PARSE_ERROR
    if "network" in message or "fetch" in message or "timeout" in message:
        return ErrorClass.NETWORK_ERROR
    if "validation" in message:
        return ErrorClass.VALIDATION_ERROR
    if "auth" in message or "401" in message or "403" in message:
        return ErrorClass.AUTH_ERROR

    return ErrorClass.UNKNOWN


def classify_error(error: BaseException) -> ErrorClass:
    """
    Assign an error to an ErrorClass. Never raises.

    Args:
        error: Any caught exception

    Returns:
        The error's class; UNKNOWN when nothing matches
    """
    structured = getattr(error, "error_class", None)
    if isinstance(structured, ErrorClass):
        return structured

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorClass.NETWORK_ERROR
    if isinstance(error, httpx.TransportError):
        return ErrorClass.NETWORK_ERROR

    try:
        message = str(error)
    except Exception:
        message = ""
    return classify_message(message)


def is_retryable(error_class: ErrorClass) -> bool:
    """True for rate limit, parse, network and validation failures"""
    return error_class in RETRYABLE_ERROR_CLASSES
