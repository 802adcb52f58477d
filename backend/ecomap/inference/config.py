from typing import Optional

import httpx

from ecomap.config import get_settings
from .chat_completions_client import ChatCompletionsClient


def get_vision_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> ChatCompletionsClient:
    """Build the vision client from settings. Raises ConfigurationMissing without a credential."""
    settings = get_settings()
    return ChatCompletionsClient(
        base_url=settings.vision_base_url,
        model=settings.vision_model,
        api_key=settings.vision_api_key,
        temperature=settings.vision_temperature,
        timeout=settings.vision_timeout_seconds,
        transport=transport,
    )
