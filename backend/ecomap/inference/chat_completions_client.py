import logging
from typing import Any, Dict, List, Optional

import httpx

from ecomap.ir.errors import ConfigurationMissing, ExtractionFailed
from ecomap.utils.json_extract import strip_fences

log = logging.getLogger(__name__)


class ChatCompletionsClient:
    """
    Async client for an OpenAI-compatible /chat/completions endpoint
    (Groq by default). One call = one HTTP round trip, no retries.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str,
        temperature: float = 0.1,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationMissing("GROQ_API_KEY is not configured")

        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.timeout = timeout
        self._transport = transport

    async def generate(self, messages: List[Dict[str, Any]], json_mode: bool = True) -> str:
        url = f"{self.base_url}/chat/completions"
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise ExtractionFailed(f"Vision provider timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ExtractionFailed(f"Vision provider unreachable: {exc}") from exc

        if response.status_code >= 400:
            log.error("[ChatCompletions] provider error %s: %s", response.status_code, response.text[:500])
            raise ExtractionFailed(f"Vision provider error: {response.status_code}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ExtractionFailed("Vision provider returned an unexpected body") from exc

        if not isinstance(content, str):
            raise ExtractionFailed("Vision provider returned no text content")

        #  STRIP MARKDOWN FENCES
        return strip_fences(content)
