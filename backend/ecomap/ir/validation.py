from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class ValidationSeverity(Enum):
    ERROR = "error"      # Map is rejected
    WARNING = "warning"  # Map is accepted but looks suspicious


@dataclass
class ValidationIssue:
    """A single problem found in a map payload"""
    severity: ValidationSeverity
    code: str           # Machine-readable issue code
    message: str        # Human-readable description
    node_id: Optional[str] = None
    edge_id: Optional[str] = None
    location: Optional[str] = None  # dotted path into the payload, e.g. "edges.2.target"

    def to_dict(self) -> dict:
        return {
            "severity": self.severity.value,
            "code": self.code,
            "message": self.message,
            "node_id": self.node_id,
            "edge_id": self.edge_id,
            "location": self.location,
        }


@dataclass
class ValidationResult:
    is_valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    @classmethod
    def success(cls, warnings: Optional[List[ValidationIssue]] = None):
        return cls(is_valid=True, issues=list(warnings or []))

    @classmethod
    def failure(cls, issues: List[ValidationIssue]):
        return cls(is_valid=False, issues=issues)

    @property
    def errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]

    def get_summary(self) -> str:
        status = "Valid" if self.is_valid else "Invalid"
        return f"{status} | Errors: {len(self.errors)}, Warnings: {len(self.warnings)}"

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "error_count": len(self.errors),
            "warning_count": len(self.warnings),
            "issues": [i.to_dict() for i in self.issues],
        }
