from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Literal, get_args
import uuid

# ---- Core Concepts ----

NodeType = Literal["authority", "entity", "judicial", "service", "other"]
NODE_TYPES = get_args(NodeType)

DEFAULT_SECTION = "general"

# Coordinates live on a normalized 0-800 canvas (rendering only)
CANVAS_SIZE = 800


class Position(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = Field(strict=True)
    y: float = Field(strict=True)


class EcosystemNode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    label: str                     # literal text from the source image
    type: NodeType
    icon: Optional[str] = None     # symbolic icon name, presentational
    description: Optional[str] = None
    category: Optional[str] = None
    position: Position


class EcosystemEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    source: str                    # node id
    target: str                    # node id
    label: Optional[str] = None
    type: Optional[str] = None


# ---- Root IR ----

class EcosystemCandidate(BaseModel):
    """
    An ecosystem graph without persistence identity.
    Produced by image extraction or by authoring, before it is saved.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    section: str = DEFAULT_SECTION
    nodes: List[EcosystemNode]
    edges: List[EcosystemEdge]

    def node_ids(self) -> List[str]:
        return [n.id for n in self.nodes]

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class EcosystemMap(EcosystemCandidate):
    """A persisted ecosystem graph: identity plus store-assigned timestamps."""
    id: str = Field(min_length=1)
    created_at: str = Field(alias="createdAt")
    updated_at: str = Field(alias="updatedAt")

    def to_candidate(self) -> EcosystemCandidate:
        return EcosystemCandidate(
            name=self.name,
            section=self.section,
            nodes=self.nodes,
            edges=self.edges,
        )


def new_map_id() -> str:
    return uuid.uuid4().hex


def empty_candidate(name: str, section: str = DEFAULT_SECTION) -> EcosystemCandidate:
    return EcosystemCandidate(name=name, section=section, nodes=[], edges=[])
