"""
Map Validator - Structural validation of ecosystem map payloads.

Catches issues like:
- Missing fields / wrong types
- Unknown node types (no coercion to "other")
- Duplicate node or edge IDs
- Edges whose source or target is not a node of the same payload

Validation is self-contained: references are resolved against the payload's
own node set, never against a stored map.
"""

from collections import defaultdict
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from ecomap.ir.ecosystem import EcosystemCandidate, EcosystemMap, NODE_TYPES
from ecomap.ir.errors import MapValidationError
from ecomap.ir.validation import ValidationIssue, ValidationResult, ValidationSeverity

M = TypeVar("M", bound=EcosystemCandidate)


class MapValidator:
    """
    Validates ecosystem map payloads.

    Usage:
        validator = MapValidator()
        model, result = validator.validate(payload)

        if not result.is_valid:
            for issue in result.issues:
                print(f"[{issue.code}] {issue.message}")
    """

    def validate(
        self,
        payload: Any,
        model: Type[M] = EcosystemCandidate,
    ) -> Tuple[Optional[M], ValidationResult]:
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)

        if not isinstance(payload, dict):
            issue = ValidationIssue(
                severity=ValidationSeverity.ERROR,
                code="NOT_AN_OBJECT",
                message=f"Map payload must be an object, got {type(payload).__name__}",
            )
            return None, ValidationResult.failure([issue])

        try:
            parsed = model.model_validate(payload)
        except PydanticValidationError as exc:
            return None, ValidationResult.failure(self._schema_issues(payload, exc))

        issues: List[ValidationIssue] = []
        issues.extend(self._check_duplicate_node_ids(parsed))
        issues.extend(self._check_duplicate_edge_ids(parsed))
        issues.extend(self._check_edge_references(parsed))
        issues.extend(self._check_self_loops(parsed))

        if any(i.severity == ValidationSeverity.ERROR for i in issues):
            return None, ValidationResult.failure(issues)

        return parsed, ValidationResult.success(issues)

    def _schema_issues(
        self, payload: Dict[str, Any], exc: PydanticValidationError
    ) -> List[ValidationIssue]:
        issues = []
        for err in exc.errors():
            loc = err.get("loc", ())
            location = ".".join(str(part) for part in loc)
            node_id, edge_id = self._ids_at(payload, loc)

            message = f"{location or 'map'}: {err.get('msg', 'invalid value')}"
            if err.get("type") == "literal_error":
                message = (
                    f"{location}: unknown node type {err.get('input')!r} "
                    f"(expected one of {', '.join(NODE_TYPES)})"
                )

            issues.append(ValidationIssue(
                severity=ValidationSeverity.ERROR,
                code="SCHEMA_VIOLATION",
                message=message,
                node_id=node_id,
                edge_id=edge_id,
                location=location,
            ))
        return issues

    @staticmethod
    def _ids_at(payload: Dict[str, Any], loc: tuple) -> Tuple[Optional[str], Optional[str]]:
        if len(loc) < 2 or loc[0] not in ("nodes", "edges") or not isinstance(loc[1], int):
            return None, None

        items = payload.get(loc[0])
        if not isinstance(items, list) or loc[1] >= len(items):
            return None, None

        item = items[loc[1]]
        item_id = item.get("id") if isinstance(item, dict) else None
        if not isinstance(item_id, str):
            item_id = None

        if loc[0] == "nodes":
            return item_id, None
        return None, item_id

    def _check_duplicate_node_ids(self, candidate: EcosystemCandidate) -> List[ValidationIssue]:
        issues = []
        seen: Dict[str, int] = defaultdict(int)
        for node in candidate.nodes:
            seen[node.id] += 1
        for node_id, count in seen.items():
            if count > 1:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    code="DUPLICATE_NODE_ID",
                    message=f"Duplicate node ID '{node_id}' appears {count} times",
                    node_id=node_id,
                ))
        return issues

    def _check_duplicate_edge_ids(self, candidate: EcosystemCandidate) -> List[ValidationIssue]:
        issues = []
        seen: Dict[str, int] = defaultdict(int)
        for edge in candidate.edges:
            seen[edge.id] += 1
        for edge_id, count in seen.items():
            if count > 1:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    code="DUPLICATE_EDGE_ID",
                    message=f"Duplicate edge ID '{edge_id}' appears {count} times",
                    edge_id=edge_id,
                ))
        return issues

    def _check_edge_references(self, candidate: EcosystemCandidate) -> List[ValidationIssue]:
        issues = []
        node_ids = set(candidate.node_ids())
        for index, edge in enumerate(candidate.edges):
            if edge.source not in node_ids:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    code="MISSING_EDGE_SOURCE",
                    message=f"Edge '{edge.id}' references non-existent source node '{edge.source}'",
                    node_id=edge.source,
                    edge_id=edge.id,
                    location=f"edges.{index}.source",
                ))
            if edge.target not in node_ids:
                issues.append(ValidationIssue(
                    severity=ValidationSeverity.ERROR,
                    code="MISSING_EDGE_TARGET",
                    message=f"Edge '{edge.id}' references non-existent target node '{edge.target}'",
                    node_id=edge.target,
                    edge_id=edge.id,
                    location=f"edges.{index}.target",
                ))
        return issues

    def _check_self_loops(self, candidate: EcosystemCandidate) -> List[ValidationIssue]:
        return [
            ValidationIssue(
                severity=ValidationSeverity.WARNING,
                code="SELF_LOOP",
                message=f"Edge '{edge.id}' connects node '{edge.source}' to itself",
                node_id=edge.source,
                edge_id=edge.id,
            )
            for edge in candidate.edges
            if edge.source == edge.target
        ]


# ============================================================
# CONVENIENCE FUNCTIONS
# ============================================================

_validator = MapValidator()


def check_map(payload: Any) -> ValidationResult:
    """Validate a candidate payload without raising."""
    _, result = _validator.validate(payload)
    return result


def validate_map(payload: Any) -> EcosystemCandidate:
    """Validate a candidate payload; raise MapValidationError on any error."""
    parsed, result = _validator.validate(payload)
    if parsed is None:
        raise MapValidationError(result.errors)
    return parsed


def validate_persisted_map(payload: Any) -> EcosystemMap:
    """Same as validate_map, but the payload must carry id and timestamps."""
    parsed, result = _validator.validate(payload, model=EcosystemMap)
    if parsed is None:
        raise MapValidationError(result.errors)
    return parsed
