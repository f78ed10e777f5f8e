"""
Thin async client for the Gemini generateContent endpoint (JSON mode)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .errors import EmptyResponseError, GeminiAPIError, ResponseParseError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_MODEL = "gemini-1.5-flash-latest"


@dataclass(frozen=True)
class GenerationConfig:
    """Sampling parameters sent with each request"""

    temperature: float = 0.3
    max_output_tokens: int = 2048
    top_k: int = 40
    top_p: float = 0.95
    response_mime_type: str = "application/json"

    def to_payload(self) -> Dict[str, Any]:
        return {
            "temperature": self.temperature,
            "maxOutputTokens": self.max_output_tokens,
            "topK": self.top_k,
            "topP": self.top_p,
            "responseMimeType": self.response_mime_type,
        }


# Low temperature for consistent classification
ANALYSIS_GENERATION_CONFIG = GenerationConfig()
# Higher temperature and token budget for varied query batches
QUERY_GENERATION_CONFIG = GenerationConfig(temperature=0.7, max_output_tokens=8192)


def extract_candidate_text(data: Any) -> Optional[str]:
    """Return candidates[0].content.parts[0].text, or None if any level is missing"""
    try:
        return data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        return None


class GeminiClient:
    """
    Issues single generateContent requests. No retries here; the invoker owns
    retry policy.
    """

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required")

        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def generate_content(
        self,
        prompt: str,
        config: GenerationConfig = ANALYSIS_GENERATION_CONFIG,
        model: Optional[str] = None
    ) -> str:
        """
        Send one prompt and return the text payload

        Raises:
            GeminiAPIError: non-2xx status
            ResponseParseError: response envelope is not JSON
            EmptyResponseError: no text in the first candidate
            httpx.TransportError: connection-level failures
        """
        url = f"{self.base_url}/models/{model or self.model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": config.to_payload(),
        }

        response = await self._http.post(
            url,
            json=payload,
            headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
        )

        if not response.is_success:
            raise GeminiAPIError(
                status_code=response.status_code,
                reason=response.reason_phrase,
                body=response.text[:1000],
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ResponseParseError(f"Gemini returned a non-JSON envelope: {e}") from e

        text = extract_candidate_text(data)
        if not text:
            raise EmptyResponseError("No text content in Gemini response")

        return text

    async def aclose(self) -> None:
        await self._http.aclose()
