"""
Structured results for audit-style validation.

Audit operations (``validate_position``, ``validate_hierarchy_integrity``,
``audit_hierarchy``, ``validate_role``) never raise on a finding; they
collect ``Finding`` objects into a ``ValidationResult`` for the caller
to act on.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from orgtree.models.columns import utcnow


@dataclass
class Finding:
    """A single validation issue or warning."""

    type: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "message": self.message, **self.details}


@dataclass
class ValidationResult:
    """Issues (blocking) and warnings (informational) from one audit."""

    issues: list[Finding] = field(default_factory=list)
    warnings: list[Finding] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)
    validated_at: datetime = field(default_factory=utcnow)

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def issue_types(self) -> list[str]:
        return [issue.type for issue in self.issues]

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": [issue.to_dict() for issue in self.issues],
            "warnings": [warning.to_dict() for warning in self.warnings],
            **self.summary,
            "validated_at": self.validated_at.isoformat(),
        }
