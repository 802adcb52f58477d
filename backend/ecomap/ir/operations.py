"""
Pure node/edge patch operations on an ecosystem graph.

Each operation takes the current graph and returns a merge-patch
({"nodes": [...]} and/or {"edges": [...]}) ready for MapStore.update.
Nothing here touches the store; the store re-validates the merged result.
"""

from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from ecomap.ir.ecosystem import EcosystemCandidate, EcosystemEdge, EcosystemNode
from ecomap.ir.errors import MapValidationError
from ecomap.ir.validation import ValidationIssue, ValidationSeverity

GraphPatch = Dict[str, List[Dict[str, Any]]]


def _issue(code: str, message: str, node_id: Optional[str] = None, edge_id: Optional[str] = None):
    return MapValidationError([
        ValidationIssue(
            severity=ValidationSeverity.ERROR,
            code=code,
            message=message,
            node_id=node_id,
            edge_id=edge_id,
        )
    ])


def _parse(model, data: Dict[str, Any]):
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise MapValidationError([
            ValidationIssue(
                severity=ValidationSeverity.ERROR,
                code="SCHEMA_VIOLATION",
                message=f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}",
                node_id=data.get("id") if model is EcosystemNode else None,
                edge_id=data.get("id") if model is EcosystemEdge else None,
                location=".".join(str(p) for p in err["loc"]),
            )
            for err in exc.errors()
        ]) from exc


def _dump(items) -> List[Dict[str, Any]]:
    return [i.model_dump(exclude_none=True) for i in items]


def next_id(prefix: str, existing: List[str]) -> str:
    """Next free id of the form <prefix><n>, e.g. n3 or e7."""
    taken = set(existing)
    n = len(existing) + 1
    while f"{prefix}{n}" in taken:
        n += 1
    return f"{prefix}{n}"


# ============================================================
# NODES
# ============================================================

def add_node(graph: EcosystemCandidate, node: Dict[str, Any]) -> GraphPatch:
    data = dict(node)
    if not data.get("id"):
        data["id"] = next_id("n", graph.node_ids())
    data.setdefault("type", "other")
    data.setdefault("position", {"x": 0.0, "y": 0.0})

    new_node = _parse(EcosystemNode, data)
    if new_node.id in graph.node_ids():
        raise _issue("DUPLICATE_NODE_ID", f"Node '{new_node.id}' already exists", node_id=new_node.id)

    return {"nodes": _dump(graph.nodes) + _dump([new_node])}


def update_node(graph: EcosystemCandidate, node_id: str, fields: Dict[str, Any]) -> GraphPatch:
    if "id" in fields and fields["id"] != node_id:
        raise _issue("IMMUTABLE_FIELD", "Node id cannot be changed", node_id=node_id)

    nodes = []
    found = False
    for node in graph.nodes:
        if node.id == node_id:
            merged = {**node.model_dump(), **fields}
            node = _parse(EcosystemNode, merged)
            found = True
        nodes.append(node)

    if not found:
        raise _issue("UNKNOWN_NODE", f"Node '{node_id}' does not exist", node_id=node_id)

    return {"nodes": _dump(nodes)}


def remove_node(graph: EcosystemCandidate, node_id: str) -> GraphPatch:
    """Remove a node together with every edge touching it."""
    if node_id not in graph.node_ids():
        raise _issue("UNKNOWN_NODE", f"Node '{node_id}' does not exist", node_id=node_id)

    nodes = [n for n in graph.nodes if n.id != node_id]
    edges = [e for e in graph.edges if e.source != node_id and e.target != node_id]
    return {"nodes": _dump(nodes), "edges": _dump(edges)}


# ============================================================
# EDGES
# ============================================================

def add_edge(graph: EcosystemCandidate, edge: Dict[str, Any]) -> GraphPatch:
    data = dict(edge)
    edge_ids = [e.id for e in graph.edges]
    if not data.get("id"):
        data["id"] = next_id("e", edge_ids)

    new_edge = _parse(EcosystemEdge, data)
    if new_edge.id in edge_ids:
        raise _issue("DUPLICATE_EDGE_ID", f"Edge '{new_edge.id}' already exists", edge_id=new_edge.id)

    return {"edges": _dump(graph.edges) + _dump([new_edge])}


def update_edge(graph: EcosystemCandidate, edge_id: str, fields: Dict[str, Any]) -> GraphPatch:
    if "id" in fields and fields["id"] != edge_id:
        raise _issue("IMMUTABLE_FIELD", "Edge id cannot be changed", edge_id=edge_id)

    edges = []
    found = False
    for edge in graph.edges:
        if edge.id == edge_id:
            edge = _parse(EcosystemEdge, {**edge.model_dump(), **fields})
            found = True
        edges.append(edge)

    if not found:
        raise _issue("UNKNOWN_EDGE", f"Edge '{edge_id}' does not exist", edge_id=edge_id)

    return {"edges": _dump(edges)}


def remove_edge(graph: EcosystemCandidate, edge_id: str) -> GraphPatch:
    if edge_id not in [e.id for e in graph.edges]:
        raise _issue("UNKNOWN_EDGE", f"Edge '{edge_id}' does not exist", edge_id=edge_id)

    return {"edges": _dump(e for e in graph.edges if e.id != edge_id)}
