import asyncio
import base64
import io
import logging
from typing import Optional, Union

from PIL import Image, UnidentifiedImageError

from ecomap.inference.chat_completions_client import ChatCompletionsClient
from ecomap.inference.config import get_vision_client
from ecomap.inference.prompt import VISION_PROMPT
from ecomap.ir.ecosystem import EcosystemCandidate
from ecomap.ir.errors import ExtractionFailed, MapValidationError
from ecomap.utils.json_extract import extract_json
from ecomap.validation import validate_map

log = logging.getLogger(__name__)

ImageData = Union[bytes, str]

# Provider-side payload limits
MAX_IMAGE_SIDE = 1500
JPEG_QUALITY = 80


def compress_image(data: bytes) -> bytes:
    """
    Re-encode an uploaded image as a JPEG the provider will accept:
    longest side at most MAX_IMAGE_SIDE, transparency flattened onto white.
    """
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ExtractionFailed(f"Image could not be decoded: {exc}") from exc

    if max(img.size) > MAX_IMAGE_SIDE:
        img.thumbnail((MAX_IMAGE_SIDE, MAX_IMAGE_SIDE), Image.Resampling.LANCZOS)

    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        background = Image.new("RGB", rgba.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        img = background
    else:
        img = img.convert("RGB")

    out = io.BytesIO()
    img.save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()


def to_image_url(image_data: ImageData) -> str:
    """
    Normalize image input into something the provider accepts as image_url.
    bytes -> compressed JPEG data URI, data:/http(s) URIs pass through,
    anything else is raw base64.
    """
    if isinstance(image_data, (bytes, bytearray)):
        if not image_data:
            raise ExtractionFailed("Image is empty")
        encoded = base64.b64encode(compress_image(bytes(image_data))).decode("ascii")
        return f"data:image/jpeg;base64,{encoded}"

    if isinstance(image_data, str):
        value = image_data.strip()
        if not value:
            raise ExtractionFailed("Image is empty")
        if value.startswith(("data:", "http://", "https://")):
            return value
        return f"data:image/jpeg;base64,{value}"

    raise ExtractionFailed(f"Unsupported image input: {type(image_data).__name__}")


class VisionExtractor:
    """
    Turns a diagram image into a validated EcosystemCandidate.

    Every call is a fresh provider round trip: no caching, no retry.
    The candidate never carries id/createdAt/updatedAt; the caller
    assigns those when it decides to save.
    """

    def __init__(self, client: Optional[ChatCompletionsClient] = None):
        self._client = client

    @property
    def client(self) -> ChatCompletionsClient:
        # Resolved lazily so that a missing credential surfaces at extract time
        if self._client is None:
            self._client = get_vision_client()
        return self._client

    def build_messages(self, image_url: str):
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": VISION_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }
        ]

    async def extract(self, image_data: ImageData) -> EcosystemCandidate:
        client = self.client
        image_url = to_image_url(image_data)

        log.info("[VisionExtractor] requesting extraction from %s", client.model)
        content = await client.generate(self.build_messages(image_url))

        try:
            payload = extract_json(content)
        except ValueError as exc:
            log.warning("[VisionExtractor] unparseable reply: %s", content[:300])
            raise ExtractionFailed(f"Model reply is not valid JSON: {exc}") from exc

        try:
            candidate = validate_map(payload)
        except MapValidationError as exc:
            log.warning("[VisionExtractor] reply failed validation: %s", exc)
            raise ExtractionFailed(f"Model reply does not match the map schema: {exc}") from exc

        log.info(
            "[VisionExtractor] extracted '%s': %d nodes, %d edges",
            candidate.name, len(candidate.nodes), len(candidate.edges),
        )
        return candidate


async def extract_with_retry(
    extractor: VisionExtractor,
    image_data: ImageData,
    attempts: int = 1,
    backoff_seconds: float = 1.0,
) -> EcosystemCandidate:
    """
    Caller-side retry policy around VisionExtractor.extract.
    Only ExtractionFailed is retried; ConfigurationMissing propagates at once.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await extractor.extract(image_data)
        except ExtractionFailed:
            if attempt == attempts:
                raise
            log.info("[VisionExtractor] attempt %d/%d failed, retrying", attempt, attempts)
            await asyncio.sleep(backoff_seconds * attempt)
