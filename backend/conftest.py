from __future__ import annotations

import io
import json

import httpx
import pytest
from PIL import Image

from ecomap.inference.chat_completions_client import ChatCompletionsClient
from ecomap.store.map_store import MapStore


def make_png(width: int = 40, height: int = 30, mode: str = "RGBA") -> bytes:
    out = io.BytesIO()
    Image.new(mode, (width, height), (0, 0, 255, 0) if mode == "RGBA" else (0, 0, 255)).save(out, format="PNG")
    return out.getvalue()


PNG_BYTES = make_png()


def sample_payload(**kw):
    payload = {
        "name": "LBA/FT ecosystem",
        "section": "general",
        "nodes": [
            {"id": "cga", "label": "CGA", "type": "authority", "position": {"x": 400.0, "y": 50.0}},
            {"id": "bank", "label": "Banque X", "type": "entity", "position": {"x": 400.0, "y": 300.0}},
            {"id": "court", "label": "Tribunal", "type": "judicial", "position": {"x": 650.0, "y": 300.0}},
        ],
        "edges": [
            {"id": "e1", "source": "bank", "target": "cga", "label": "Rapports"},
            {"id": "e2", "source": "cga", "target": "court", "label": "Signalement"},
        ],
    }
    payload.update(kw)
    return payload


def provider_reply(content, status_code: int = 200) -> httpx.Response:
    if not isinstance(content, str):
        content = json.dumps(content)
    return httpx.Response(
        status_code,
        json={"choices": [{"message": {"role": "assistant", "content": content}}]},
    )


def make_client(handler) -> ChatCompletionsClient:
    return ChatCompletionsClient(
        base_url="https://vision.test/v1",
        model="vision-test",
        api_key="test-key",
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def payload():
    return sample_payload()


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'maps.db'}"


@pytest.fixture
def make_store(database_url):
    def factory() -> MapStore:
        return MapStore(database_url=database_url, section="general")
    return factory
