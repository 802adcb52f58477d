import json
from typing import Any, Iterable, List, Optional

from ecomap.ir.ecosystem import EcosystemCandidate
from ecomap.session.controller import SessionState


def serialize_map(obj: Optional[EcosystemCandidate]) -> Optional[dict]:
    """
    Serialize a map or candidate into its wire document (camelCase keys).
    None passes through.
    """
    if obj is None:
        return None
    return obj.to_document()


def serialize_maps(maps: Iterable[EcosystemCandidate]) -> List[dict]:
    return [serialize_map(m) for m in maps]


def serialize_state(state: SessionState) -> dict:
    return state.to_dict()


def sse_event(payload: Any) -> str:
    """One Server-Sent Events frame."""
    return f"data: {json.dumps(payload)}\n\n"
