"""
Hierarchy service: hierarchy definitions and whole-tree audits.
"""

import logging

from flask import current_app
from sqlalchemy import func

from orgtree.errors import InvalidEndpoint
from orgtree.extensions import db
from orgtree.models.hierarchy import HIERARCHY_TYPES, HierarchyDefinition, HierarchyNode
from orgtree.services import audit_service, node_service
from orgtree.services.validation import Finding, ValidationResult

logger = logging.getLogger(__name__)

MIN_DEPTH = 1
MAX_DEPTH = 50


def get_hierarchy(hierarchy_id: int) -> HierarchyDefinition | None:
    """Return a hierarchy by primary key, or None if not found."""
    return db.session.get(HierarchyDefinition, hierarchy_id)


def get_hierarchy_or_raise(hierarchy_id: int) -> HierarchyDefinition:
    hierarchy = get_hierarchy(hierarchy_id)
    if hierarchy is None:
        raise InvalidEndpoint(f"Hierarchy ID {hierarchy_id} not found.")
    return hierarchy


def find_hierarchies_by_organization(
    organization_id: int, include_inactive: bool = False
) -> list[HierarchyDefinition]:
    query = HierarchyDefinition.query.filter_by(organization_id=organization_id)
    if not include_inactive:
        query = query.filter(HierarchyDefinition.is_active == True)  # noqa: E712
    return query.order_by(HierarchyDefinition.name).all()


def get_organizational_hierarchy(organization_id: int) -> HierarchyDefinition | None:
    """Return the organization's active ``organizational`` hierarchy, if any."""
    return (
        HierarchyDefinition.query.filter_by(
            organization_id=organization_id,
            hierarchy_type="organizational",
            is_active=True,
        )
        .order_by(HierarchyDefinition.id)
        .first()
    )


def create_hierarchy(
    organization_id: int,
    name: str,
    hierarchy_type: str = "organizational",
    max_depth: int | None = None,
    description: str | None = None,
    config: dict | None = None,
    user_id: int | None = None,
) -> HierarchyDefinition:
    """
    Create a hierarchy definition.

    Args:
        organization_id: Owning organization.
        name:            Display name (required).
        hierarchy_type:  One of ``HIERARCHY_TYPES``.
        max_depth:       Deepest allowed node level (1-50).  Defaults to
                         the ``HIERARCHY_DEFAULT_MAX_DEPTH`` setting.
        user_id:         ID of the user making the change.

    Raises:
        ValueError: On a blank name, unknown type or out-of-range depth.
    """
    if not name or not name.strip():
        raise ValueError("Hierarchy name is required.")
    if hierarchy_type not in HIERARCHY_TYPES:
        raise ValueError(f"Unknown hierarchy type '{hierarchy_type}'.")
    if max_depth is None:
        max_depth = current_app.config["HIERARCHY_DEFAULT_MAX_DEPTH"]
    if not MIN_DEPTH <= max_depth <= MAX_DEPTH:
        raise ValueError(
            f"max_depth must be between {MIN_DEPTH} and {MAX_DEPTH}, got {max_depth}."
        )

    hierarchy = HierarchyDefinition(
        organization_id=organization_id,
        name=name.strip(),
        hierarchy_type=hierarchy_type,
        max_depth=max_depth,
        description=description,
        config=config or {},
        created_by=user_id,
    )
    try:
        db.session.add(hierarchy)
        db.session.flush()

        audit_service.log_change(
            user_id=user_id,
            action_type="CREATE",
            entity_type="hierarchy_definition",
            entity_id=hierarchy.id,
            new_value={
                "name": hierarchy.name,
                "hierarchy_type": hierarchy_type,
                "max_depth": max_depth,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Created hierarchy %d '%s' (max_depth=%d)", hierarchy.id, hierarchy.name, max_depth
    )
    return hierarchy


def get_max_depth_in_use(hierarchy_id: int) -> int:
    """Return the deepest cached level among active nodes (0 if empty)."""
    deepest = (
        db.session.query(func.max(HierarchyNode.level))
        .filter(
            HierarchyNode.hierarchy_id == hierarchy_id,
            HierarchyNode.is_active == True,  # noqa: E712
        )
        .scalar()
    )
    return deepest or 0


def audit_hierarchy(hierarchy_id: int) -> ValidationResult:
    """
    Run position validation over every node and check tree-wide limits.

    Findings:
      - everything ``validate_position`` reports, tagged with ``node_id``
      - ``ORPHANED_NODE`` for an active node under an inactive parent
      - a ``DEPTH_EXCEEDED`` warning when the deepest active node sits
        below ``max_depth``

    Never raises; a missing hierarchy is an ``INVALID_ENDPOINT`` finding.
    """
    result = ValidationResult(summary={"hierarchy_id": hierarchy_id, "nodes_checked": 0})
    hierarchy = get_hierarchy(hierarchy_id)
    if hierarchy is None:
        result.issues.append(
            Finding("INVALID_ENDPOINT", f"Hierarchy ID {hierarchy_id} not found.")
        )
        return result

    nodes = node_service.find_nodes_by_hierarchy(hierarchy_id, active_only=False)

    for node in nodes:
        position = node_service.validate_position(node.id)
        for finding in position.issues:
            finding.details.setdefault("node_id", node.id)
            result.issues.append(finding)

        if node.is_active and node.parent_id is not None:
            parent = db.session.get(HierarchyNode, node.parent_id)
            if parent is not None and not parent.is_active:
                result.issues.append(
                    Finding(
                        "ORPHANED_NODE",
                        f"Active node {node.id} sits under inactive node {parent.id}.",
                        {"node_id": node.id, "parent_id": parent.id},
                    )
                )

    deepest = get_max_depth_in_use(hierarchy_id)
    if deepest > hierarchy.max_depth:
        result.warnings.append(
            Finding(
                "DEPTH_EXCEEDED",
                f"Deepest active node is at level {deepest}; "
                f"max depth is {hierarchy.max_depth}.",
                {"deepest_level": deepest, "max_depth": hierarchy.max_depth},
            )
        )

    result.summary = {
        "hierarchy_id": hierarchy_id,
        "nodes_checked": len(nodes),
        "deepest_level": deepest,
    }
    if not result.is_valid:
        logger.warning(
            "Hierarchy %d audit found %d issues", hierarchy_id, len(result.issues)
        )
    return result

