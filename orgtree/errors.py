"""
Domain error taxonomy for the hierarchy and permission engine.

Every validation failure raised by a service is an ``OrgTreeError``
subclass.  The ``code`` identifies the error kind for callers and the
``status_code`` is the HTTP status the JSON error handler responds
with.  Audit operations never raise these; they return findings.
"""

from typing import Any


class OrgTreeError(Exception):
    """Base error for all hierarchy and permission failures."""

    code = "ORGTREE_ERROR"
    status_code = 400

    def __init__(self, message: str, issues: list[dict[str, Any]] | None = None):
        self.message = message
        self.issues = issues or []
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON responses and audit entries."""
        payload: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.issues:
            payload["issues"] = self.issues
        return payload


# -- Structural errors -----------------------------------------------------


class InvalidEndpoint(OrgTreeError):
    """Referenced node, role, relationship or hierarchy is missing or inactive."""

    code = "INVALID_ENDPOINT"
    status_code = 404


class InvalidParent(InvalidEndpoint):
    """Parent node does not resolve within the node's hierarchy."""

    code = "INVALID_PARENT"


class HierarchyMismatch(OrgTreeError):
    code = "HIERARCHY_MISMATCH"
    status_code = 409


class CircularReference(OrgTreeError):
    code = "CIRCULAR_REFERENCE"
    status_code = 409


class InvalidRelationshipType(OrgTreeError):
    code = "INVALID_RELATIONSHIP_TYPE"
    status_code = 422


class DepthExceeded(OrgTreeError):
    code = "DEPTH_EXCEEDED"
    status_code = 422


class DuplicateHierarchicalParent(OrgTreeError):
    code = "DUPLICATE_HIERARCHICAL_PARENT"
    status_code = 409


class NodeHasActiveChildren(OrgTreeError):
    code = "NODE_HAS_ACTIVE_CHILDREN"
    status_code = 409


class NodeAlreadyClaimed(OrgTreeError):
    code = "NODE_ALREADY_CLAIMED"
    status_code = 409


class HierarchyIntegrityError(OrgTreeError):
    """
    Stored parent pointers are inconsistent with an acyclic tree.

    Raised when a walk revisits a node or runs past the hierarchy's
    depth bound.  Indicates corrupted data, not a caller mistake.
    """

    code = "HIERARCHY_INTEGRITY_ERROR"
    status_code = 500


# -- Role errors -----------------------------------------------------------


class RoleValidationError(OrgTreeError):
    """A role failed structural validation (activation or construction)."""

    code = "ROLE_VALIDATION_ERROR"
    status_code = 422


class DuplicateRoleName(RoleValidationError):
    code = "DUPLICATE_ROLE_NAME"
    status_code = 409


class MissingInheritanceRules(RoleValidationError):
    code = "MISSING_INHERITANCE_RULES"


class MissingConditions(RoleValidationError):
    code = "MISSING_CONDITIONS"


class InvalidConfig(RoleValidationError):
    code = "INVALID_CONFIG"


class SystemRoleImmutable(OrgTreeError):
    code = "SYSTEM_ROLE_IMMUTABLE"
    status_code = 403
