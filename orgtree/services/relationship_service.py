"""
Relationship service: validated creation and removal of hierarchy edges.

Every edge passes the same ordered checks before it is written:

  1. both endpoints exist and are active
  2. both endpoints and the edge share one hierarchy
  3. the parent is not already below the child (no cycles)
  4. the edge type is allowed for the (parent type, child type) pair
  5. hierarchical edges only: depth stays within ``max_depth`` and the
     child has no other active hierarchical parent

A ``hierarchical`` edge also moves the child under the parent (via
``node_service.apply_parent``) in the same transaction, so cached
levels and paths never disagree with the edges.
"""

import logging

from orgtree.errors import (
    CircularReference,
    DepthExceeded,
    DuplicateHierarchicalParent,
    HierarchyIntegrityError,
    HierarchyMismatch,
    InvalidEndpoint,
    InvalidRelationshipType,
    OrgTreeError,
)
from orgtree.extensions import db
from orgtree.models.columns import utcnow
from orgtree.models.hierarchy import (
    RELATIONSHIP_TYPES,
    HierarchyDefinition,
    HierarchyNode,
    HierarchyRelationship,
)
from orgtree.services import audit_service, node_service
from orgtree.services.relationship_types import get_valid_relationship_types
from orgtree.services.validation import Finding, ValidationResult

logger = logging.getLogger(__name__)

ENTITY_TYPE = "hierarchy_relationship"

# Finding type -> error raised when the finding blocks a write.
_ERRORS_BY_FINDING: dict[str, type[OrgTreeError]] = {
    "INVALID_ENDPOINT": InvalidEndpoint,
    "HIERARCHY_MISMATCH": HierarchyMismatch,
    "CIRCULAR_REFERENCE": CircularReference,
    "INTEGRITY_ERROR": HierarchyIntegrityError,
    "INVALID_RELATIONSHIP_TYPE": InvalidRelationshipType,
    "DEPTH_EXCEEDED": DepthExceeded,
    "DUPLICATE_HIERARCHICAL_PARENT": DuplicateHierarchicalParent,
}

DIRECTIONS = ("incoming", "outgoing", "both")


# -- Lookups ---------------------------------------------------------------


def get_relationship(relationship_id: int) -> HierarchyRelationship | None:
    """Return a relationship by primary key, or None if not found."""
    return db.session.get(HierarchyRelationship, relationship_id)


def _active(query):
    return query.filter(HierarchyRelationship.is_active == True)  # noqa: E712


def _ordered(query):
    return query.order_by(HierarchyRelationship.created_at, HierarchyRelationship.id)


def find_relationships_by_node(
    node_id: int, direction: str = "both", active_only: bool = True
) -> list[HierarchyRelationship]:
    """
    Return edges touching a node.

    Args:
        node_id:     PK of the node.
        direction:   ``incoming`` (node is the child), ``outgoing`` (node
                     is the parent) or ``both``.
        active_only: Skip deactivated edges.
    """
    if direction not in DIRECTIONS:
        raise ValueError(f"direction must be one of {DIRECTIONS}, got '{direction}'.")

    query = HierarchyRelationship.query
    if direction == "incoming":
        query = query.filter(HierarchyRelationship.child_node_id == node_id)
    elif direction == "outgoing":
        query = query.filter(HierarchyRelationship.parent_node_id == node_id)
    else:
        query = query.filter(
            db.or_(
                HierarchyRelationship.parent_node_id == node_id,
                HierarchyRelationship.child_node_id == node_id,
            )
        )
    if active_only:
        query = _active(query)
    return _ordered(query).all()


def find_relationships_by_hierarchy(
    hierarchy_id: int,
    relationship_type: str | None = None,
    active_only: bool = True,
) -> list[HierarchyRelationship]:
    query = HierarchyRelationship.query.filter_by(hierarchy_id=hierarchy_id)
    if relationship_type is not None:
        query = query.filter_by(relationship_type=relationship_type)
    if active_only:
        query = _active(query)
    return _ordered(query).all()


def find_relationships_by_type(
    relationship_type: str, hierarchy_id: int | None = None
) -> list[HierarchyRelationship]:
    """Return active edges of one type, optionally within one hierarchy."""
    query = _active(
        HierarchyRelationship.query.filter_by(relationship_type=relationship_type)
    )
    if hierarchy_id is not None:
        query = query.filter_by(hierarchy_id=hierarchy_id)
    return _ordered(query).all()


# -- Edge validation -------------------------------------------------------


def _edge_findings(
    parent_node_id: int,
    child_node_id: int,
    relationship_type: str,
    hierarchy_id: int,
    exclude_relationship_id: int | None = None,
) -> list[Finding]:
    """
    Run the ordered edge checks and return every finding.

    Checks that depend on an earlier failure (e.g. the cycle walk when an
    endpoint is missing) are skipped.  ``exclude_relationship_id`` keeps
    an existing edge from counting as its own duplicate when it is
    re-validated.
    """
    findings: list[Finding] = []

    hierarchy = db.session.get(HierarchyDefinition, hierarchy_id)
    if hierarchy is None or not hierarchy.is_active:
        findings.append(
            Finding(
                "INVALID_ENDPOINT",
                f"Hierarchy ID {hierarchy_id} not found or inactive.",
                {"hierarchy_id": hierarchy_id},
            )
        )
    for side, node_id in (("parent", parent_node_id), ("child", child_node_id)):
        node = db.session.get(HierarchyNode, node_id)
        if node is None or not node.is_active:
            findings.append(
                Finding(
                    "INVALID_ENDPOINT",
                    f"The {side} node ID {node_id} was not found or is inactive.",
                    {"node_id": node_id},
                )
            )
    if findings:
        return findings

    parent = db.session.get(HierarchyNode, parent_node_id)
    child = db.session.get(HierarchyNode, child_node_id)

    if parent.hierarchy_id != hierarchy_id or child.hierarchy_id != hierarchy_id:
        findings.append(
            Finding(
                "HIERARCHY_MISMATCH",
                f"Nodes {parent.id} and {child.id} must both belong to "
                f"hierarchy {hierarchy_id}.",
                {
                    "parent_hierarchy_id": parent.hierarchy_id,
                    "child_hierarchy_id": child.hierarchy_id,
                },
            )
        )
        return findings

    cap = node_service.traversal_cap(hierarchy)
    try:
        creates_cycle = parent.id == child.id or node_service.is_descendant(
            child, parent.id, cap
        )
        child_height = node_service.subtree_height(child, cap)
    except HierarchyIntegrityError as exc:
        findings.append(Finding("INTEGRITY_ERROR", exc.message, {"node_id": child.id}))
        return findings
    if creates_cycle:
        findings.append(
            Finding(
                "CIRCULAR_REFERENCE",
                f"Node {parent.id} is already below node {child.id}.",
                {"parent_node_id": parent.id, "child_node_id": child.id},
            )
        )

    allowed = get_valid_relationship_types(parent.node_type, child.node_type)
    if relationship_type not in allowed:
        findings.append(
            Finding(
                "INVALID_RELATIONSHIP_TYPE",
                f"'{relationship_type}' edges are not allowed from "
                f"{parent.node_type} to {child.node_type}.",
                {"allowed": sorted(allowed)},
            )
        )

    if relationship_type == "hierarchical":
        child_level = parent.level + 1
        if child_level + child_height > hierarchy.max_depth:
            findings.append(
                Finding(
                    "DEPTH_EXCEEDED",
                    f"Child would sit at level {child_level} with a subtree "
                    f"{child_height} deep; max depth is {hierarchy.max_depth}.",
                    {
                        "child_level": child_level,
                        "subtree_height": child_height,
                        "max_depth": hierarchy.max_depth,
                    },
                )
            )

        duplicates = _active(
            HierarchyRelationship.query.filter_by(
                child_node_id=child.id, relationship_type="hierarchical"
            )
        )
        if exclude_relationship_id is not None:
            duplicates = duplicates.filter(
                HierarchyRelationship.id != exclude_relationship_id
            )
        existing = duplicates.first()
        if existing is not None:
            findings.append(
                Finding(
                    "DUPLICATE_HIERARCHICAL_PARENT",
                    f"Node {child.id} already has hierarchical parent "
                    f"{existing.parent_node_id}.",
                    {"existing_relationship_id": existing.id},
                )
            )
        # Parents set through create_node or reparent_node have no edge row.
        elif child.parent_id is not None and child.parent_id != parent.id:
            findings.append(
                Finding(
                    "DUPLICATE_HIERARCHICAL_PARENT",
                    f"Node {child.id} already sits under node {child.parent_id}.",
                    {"existing_parent_id": child.parent_id},
                )
            )

    return findings


def _raise_for(findings: list[Finding]) -> None:
    first = findings[0]
    error_class = _ERRORS_BY_FINDING.get(first.type, OrgTreeError)
    raise error_class(first.message, issues=[finding.to_dict() for finding in findings])


# -- Edge creation ---------------------------------------------------------


def _create_relationship(
    parent_node_id: int,
    child_node_id: int,
    relationship_type: str,
    hierarchy_id: int,
    strength: float = 1.0,
    weight: float = 1.0,
    metadata: dict | None = None,
    effective_to=None,
    user_id: int | None = None,
) -> HierarchyRelationship:
    """Validate and write one edge (flushed, not committed)."""
    if relationship_type not in RELATIONSHIP_TYPES:
        raise ValueError(f"Unknown relationship type '{relationship_type}'.")
    if not 0 <= strength <= 1:
        raise ValueError("strength must be between 0 and 1.")
    if weight < 0:
        raise ValueError("weight must not be negative.")

    # Serialize concurrent attaches to the same child.
    child = (
        db.session.query(HierarchyNode)
        .filter(HierarchyNode.id == child_node_id)
        .with_for_update()
        .one_or_none()
    )

    findings = _edge_findings(
        parent_node_id, child_node_id, relationship_type, hierarchy_id
    )
    if findings:
        logger.warning(
            "Rejected %s edge %s -> %s: %s",
            relationship_type,
            parent_node_id,
            child_node_id,
            [finding.type for finding in findings],
        )
        _raise_for(findings)

    relationship = HierarchyRelationship(
        hierarchy_id=hierarchy_id,
        parent_node_id=parent_node_id,
        child_node_id=child_node_id,
        relationship_type=relationship_type,
        strength=strength,
        weight=weight,
        relationship_metadata=metadata or {},
        effective_to=effective_to,
        created_by=user_id,
        updated_by=user_id,
    )
    db.session.add(relationship)
    db.session.flush()

    if relationship.is_hierarchical:
        parent = db.session.get(HierarchyNode, parent_node_id)
        node_service.apply_parent(child, parent)

    audit_service.log_change(
        user_id=user_id,
        action_type="CREATE",
        entity_type=ENTITY_TYPE,
        entity_id=relationship.id,
        new_value=relationship.to_dict(),
    )
    return relationship


def create_relationship(
    parent_node_id: int,
    child_node_id: int,
    relationship_type: str,
    hierarchy_id: int,
    strength: float = 1.0,
    weight: float = 1.0,
    metadata: dict | None = None,
    effective_to=None,
    user_id: int | None = None,
) -> HierarchyRelationship:
    """
    Create a validated edge between two nodes.

    A ``hierarchical`` edge also makes the parent the child's tree
    parent and recomputes level and path for the child's subtree.

    Args:
        parent_node_id:    PK of the parent (source) node.
        child_node_id:     PK of the child (target) node.
        relationship_type: One of ``RELATIONSHIP_TYPES``.
        hierarchy_id:      PK of the hierarchy both nodes belong to.
        strength:          Edge strength in [0, 1].
        weight:            Non-negative edge weight.
        user_id:           ID of the user making the change.

    Raises:
        InvalidEndpoint, HierarchyMismatch, CircularReference,
        InvalidRelationshipType, DepthExceeded,
        DuplicateHierarchicalParent: The first failed check, carrying
            every finding in ``issues``.  Nothing is written.
    """
    try:
        relationship = _create_relationship(
            parent_node_id,
            child_node_id,
            relationship_type,
            hierarchy_id,
            strength=strength,
            weight=weight,
            metadata=metadata,
            effective_to=effective_to,
            user_id=user_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Created %s relationship %d: %d -> %d",
        relationship_type,
        relationship.id,
        parent_node_id,
        child_node_id,
    )
    return relationship


def bulk_create_relationships(
    entries: list[dict], user_id: int | None = None
) -> list[HierarchyRelationship]:
    """
    Create several edges in one transaction.

    Each entry holds the keyword arguments of ``create_relationship``
    (``parent_node_id``, ``child_node_id``, ``relationship_type``,
    ``hierarchy_id`` and optional attributes).  Entries see the edges
    created before them.  Any failure rolls back the whole batch.
    """
    created = []
    try:
        for index, entry in enumerate(entries):
            try:
                created.append(_create_relationship(**entry, user_id=user_id))
            except OrgTreeError:
                logger.warning("Bulk relationship entry %d rejected", index)
                raise
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Bulk created %d relationships", len(created))
    return created


# -- Edge removal ----------------------------------------------------------


def remove_relationship(
    relationship_id: int, user_id: int | None = None
) -> HierarchyRelationship:
    """
    Soft-deactivate an edge.

    Removing a hierarchical edge turns its child into a root (level 0,
    path equal to its own id) and recomputes the child's whole subtree.

    Raises:
        InvalidEndpoint: If the edge is missing or already inactive.
    """
    relationship = db.session.get(HierarchyRelationship, relationship_id)
    if relationship is None or not relationship.is_active:
        raise InvalidEndpoint(
            f"Relationship ID {relationship_id} not found or already inactive."
        )

    try:
        relationship.is_active = False
        relationship.effective_to = utcnow()
        relationship.updated_by = user_id

        refreshed = 0
        if relationship.is_hierarchical:
            child = node_service.get_node_or_raise(
                relationship.child_node_id, for_update=True
            )
            if child.parent_id == relationship.parent_node_id:
                refreshed = node_service.apply_parent(child, None)

        audit_service.log_change(
            user_id=user_id,
            action_type="DEACTIVATE",
            entity_type=ENTITY_TYPE,
            entity_id=relationship.id,
            previous_value={"is_active": True},
            new_value={"is_active": False, "refreshed_nodes": refreshed},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Removed relationship %d (%d nodes refreshed)", relationship_id, refreshed)
    return relationship


# -- Integrity audit -------------------------------------------------------


def validate_hierarchy_integrity(hierarchy_id: int) -> ValidationResult:
    """
    Re-run the edge checks against every active edge in a hierarchy.

    Read-only; never raises on a finding.  Each finding carries the
    ``relationship_id`` it was found on.
    """
    result = ValidationResult(
        summary={"hierarchy_id": hierarchy_id, "relationships_checked": 0}
    )
    if db.session.get(HierarchyDefinition, hierarchy_id) is None:
        result.issues.append(
            Finding("INVALID_ENDPOINT", f"Hierarchy ID {hierarchy_id} not found.")
        )
        return result

    relationships = find_relationships_by_hierarchy(hierarchy_id)
    for relationship in relationships:
        findings = _edge_findings(
            relationship.parent_node_id,
            relationship.child_node_id,
            relationship.relationship_type,
            hierarchy_id,
            exclude_relationship_id=relationship.id,
        )
        for finding in findings:
            finding.details["relationship_id"] = relationship.id
            result.issues.append(finding)

    result.summary["relationships_checked"] = len(relationships)
    if result.issues:
        logger.warning(
            "Hierarchy %d integrity check found %d issues",
            hierarchy_id,
            len(result.issues),
        )
    return result
