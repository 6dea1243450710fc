import logging
from typing import Any, Optional

import httpx

from services.config import (
    ConfigurationError,
    GEMINI_API_KEY,
    GEMINI_MODEL,
    GEMINI_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
]


class LLMClientError(RuntimeError):
    """Raised when the text-generation service fails or returns nothing usable."""


def _extract_text(obj: Any) -> Optional[str]:
    # First 'text' string anywhere in the response body
    if isinstance(obj, dict):
        if "text" in obj and isinstance(obj["text"], str):
            return obj["text"]
        for value in obj.values():
            found = _extract_text(value)
            if found:
                return found
    elif isinstance(obj, list):
        for item in obj:
            found = _extract_text(item)
            if found:
                return found
    return None


class LLMClient:
    """Client for Google's Gemini generateContent endpoint"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key if api_key is not None else GEMINI_API_KEY
        if not self.api_key:
            raise ConfigurationError("GEMINI_API_KEY is not configured")
        self.model = model or GEMINI_MODEL
        self.timeout = timeout or GEMINI_TIMEOUT_SECONDS
        self.client = http_client or httpx.AsyncClient(timeout=self.timeout)

    async def generate(self, prompt: str, temperature: Optional[float] = None, json_mode: bool = False) -> str:
        """
        Generate text for a single prompt.

        Args:
            prompt: The full prompt text
            temperature: Sampling temperature; the model default when None
            json_mode: Ask the model for an application/json response

        Returns:
            The generated text

        Raises:
            LLMClientError: on transport errors, non-2xx responses or an empty reply
        """
        generation_config = {"topP": 0.8, "topK": 40, "maxOutputTokens": 2048}
        if temperature is not None:
            generation_config["temperature"] = temperature
        if json_mode:
            generation_config["responseMimeType"] = "application/json"

        request_data = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": generation_config,
            "safetySettings": SAFETY_SETTINGS,
        }

        try:
            response = await self.client.post(
                f"{GEMINI_BASE_URL}/models/{self.model}:generateContent",
                params={"key": self.api_key},
                json=request_data,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise LLMClientError(f"Gemini returned HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise LLMClientError(f"Gemini request failed: {e}") from e

        text = None
        candidates = data.get("candidates") or []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            if parts and isinstance(parts[0], dict) and isinstance(parts[0].get("text"), str):
                text = parts[0]["text"]
        if text is None:
            text = _extract_text(data)

        if not text or not text.strip():
            raise LLMClientError("Gemini returned an empty response")
        return text.strip()

    async def aclose(self):
        await self.client.aclose()
