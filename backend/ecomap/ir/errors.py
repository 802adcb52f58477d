from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from .validation import ValidationIssue


class EcosystemError(Exception):
    """Base class for every error the ecosystem engine surfaces."""


class ConfigurationMissing(EcosystemError):
    """A required external credential or setting is absent."""


class ExtractionFailed(EcosystemError):
    """The vision provider call or its reply could not produce a valid map."""


class MapValidationError(EcosystemError):
    def __init__(self, issues: List["ValidationIssue"]):
        self.issues = list(issues)
        summary = "; ".join(i.message for i in self.issues[:5])
        if len(self.issues) > 5:
            summary += f" (+{len(self.issues) - 5} more)"
        super().__init__(f"Invalid ecosystem map: {summary}")

    def to_dict(self) -> dict:
        return {"issues": [i.to_dict() for i in self.issues]}


class NotFound(EcosystemError):
    def __init__(self, map_id: str):
        self.map_id = map_id
        super().__init__(f"Ecosystem map '{map_id}' not found")


class StoreUnavailable(EcosystemError):
    """
    The document store is unreachable or unconfigured.
    The store catches this internally and degrades to no-op behaviour.
    """
