"""
Node service: create, query, move and audit hierarchy nodes.

Every node caches its ``level`` and ``materialized_path``.  Both are
derived from the live ``parent_id`` chain and recomputed here after
each create and reparent, so callers never set them directly.

All tree walks are bounded by the owning hierarchy's ``max_depth``
plus one and track the nodes they have visited.  A walk that revisits
a node or runs past the bound raises ``HierarchyIntegrityError``
instead of looping on corrupted parent pointers.
"""

import logging
from collections import deque

from sqlalchemy import func

from orgtree.errors import (
    CircularReference,
    DepthExceeded,
    HierarchyIntegrityError,
    HierarchyMismatch,
    InvalidEndpoint,
    InvalidParent,
    NodeAlreadyClaimed,
    NodeHasActiveChildren,
)
from orgtree.extensions import db
from orgtree.models.columns import utcnow
from orgtree.models.hierarchy import (
    NODE_TYPES,
    PATH_SEPARATOR,
    HierarchyDefinition,
    HierarchyNode,
    HierarchyRelationship,
)
from orgtree.services import audit_service
from orgtree.services.validation import Finding, ValidationResult

logger = logging.getLogger(__name__)

ENTITY_TYPE = "hierarchy_node"


# -- Lookups ---------------------------------------------------------------


def get_node(node_id: int) -> HierarchyNode | None:
    """Return a node by primary key, or None if not found."""
    return db.session.get(HierarchyNode, node_id)


def get_node_or_raise(
    node_id: int, active_only: bool = False, for_update: bool = False
) -> HierarchyNode:
    """
    Return a node by primary key or raise ``InvalidEndpoint``.

    Args:
        node_id:     PK of the node.
        active_only: Treat an inactive node as missing.
        for_update:  Take a row lock on the node for the rest of the
                     transaction.
    """
    if for_update:
        node = (
            db.session.query(HierarchyNode)
            .filter(HierarchyNode.id == node_id)
            .with_for_update()
            .one_or_none()
        )
    else:
        node = db.session.get(HierarchyNode, node_id)
    if node is None or (active_only and not node.is_active):
        raise InvalidEndpoint(f"Node ID {node_id} not found or inactive.")
    return node


def _get_active_hierarchy(hierarchy_id: int) -> HierarchyDefinition:
    hierarchy = db.session.get(HierarchyDefinition, hierarchy_id)
    if hierarchy is None or not hierarchy.is_active:
        raise InvalidEndpoint(f"Hierarchy ID {hierarchy_id} not found or inactive.")
    return hierarchy


def traversal_cap(hierarchy: HierarchyDefinition) -> int:
    """Maximum number of steps any walk may take inside ``hierarchy``."""
    return hierarchy.max_depth + 1


def build_path(node_ids: list[int]) -> str:
    return PATH_SEPARATOR.join(str(node_id) for node_id in node_ids)


def _children_query(parent_id: int, active_only: bool = True):
    query = HierarchyNode.query.filter(HierarchyNode.parent_id == parent_id)
    if active_only:
        query = query.filter(HierarchyNode.is_active == True)  # noqa: E712
    return query.order_by(HierarchyNode.node_order, HierarchyNode.id)


# -- Bounded walks ---------------------------------------------------------


def walk_ancestors(node: HierarchyNode, cap: int) -> list[HierarchyNode]:
    """
    Follow parent pointers from ``node`` to its root.

    Returns the ancestors nearest first.  Stops quietly at a dangling
    parent pointer; callers that care check ``parent_id`` on the last
    element.

    Raises:
        HierarchyIntegrityError: On a revisited node or more than
            ``cap`` steps.
    """
    ancestors: list[HierarchyNode] = []
    visited = {node.id}
    current = node
    while current.parent_id is not None:
        if len(ancestors) >= cap:
            raise HierarchyIntegrityError(
                f"Ancestor walk from node {node.id} exceeded {cap} steps."
            )
        if current.parent_id in visited:
            raise HierarchyIntegrityError(
                f"Cycle detected above node {node.id} at node {current.parent_id}."
            )
        parent = db.session.get(HierarchyNode, current.parent_id)
        if parent is None:
            break
        visited.add(parent.id)
        ancestors.append(parent)
        current = parent
    return ancestors


def iter_descendants(
    node: HierarchyNode,
    cap: int,
    max_depth: int | None = None,
    active_only: bool = True,
):
    """
    Breadth-first walk below ``node`` yielding ``(descendant, depth)``.

    ``depth`` is relative to ``node`` (children are depth 1).  With
    ``max_depth`` set, nodes deeper than it are neither yielded nor
    expanded.

    Raises:
        HierarchyIntegrityError: On a revisited node or a relative depth
            past ``cap``.
    """
    visited = {node.id}
    queue = deque([(node, 0)])
    while queue:
        current, depth = queue.popleft()
        if max_depth is not None and depth >= max_depth:
            continue
        for child in _children_query(current.id, active_only).all():
            if child.id in visited:
                raise HierarchyIntegrityError(
                    f"Cycle detected below node {node.id} at node {child.id}."
                )
            if depth + 1 > cap:
                raise HierarchyIntegrityError(
                    f"Descendant walk from node {node.id} exceeded {cap} levels."
                )
            visited.add(child.id)
            yield child, depth + 1
            queue.append((child, depth + 1))


def subtree_height(node: HierarchyNode, cap: int) -> int:
    """Depth of the deepest node below ``node``, inactive nodes included."""
    height = 0
    for _, depth in iter_descendants(node, cap, active_only=False):
        height = max(height, depth)
    return height


def is_descendant(node: HierarchyNode, candidate_id: int, cap: int) -> bool:
    """True when ``candidate_id`` sits anywhere below ``node``."""
    return any(
        descendant.id == candidate_id
        for descendant, _ in iter_descendants(node, cap, active_only=False)
    )


# -- Tree queries ----------------------------------------------------------


def get_children(node_id: int, active_only: bool = True) -> list[HierarchyNode]:
    """
    Return the direct children of a node.

    Ordered by ``node_order`` then id.  Inactive children are left out
    unless ``active_only`` is False.
    """
    get_node_or_raise(node_id)
    return _children_query(node_id, active_only).all()


def get_ancestors(node_id: int) -> list[HierarchyNode]:
    """
    Return a node's ancestors from its immediate parent up to the root.

    Computed from the live parent pointers, not the cached path.
    """
    node = get_node_or_raise(node_id)
    return walk_ancestors(node, traversal_cap(node.hierarchy))


def get_descendants(
    node_id: int, max_depth: int | None = None, active_only: bool = True
) -> list[HierarchyNode]:
    """
    Return every node below ``node_id`` in breadth-first order.

    Args:
        node_id:     PK of the subtree root (not included in the result).
        max_depth:   Optional bound on relative depth; ``1`` returns the
                     children only.
        active_only: Skip inactive nodes and their subtrees.
    """
    node = get_node_or_raise(node_id)
    cap = traversal_cap(node.hierarchy)
    return [
        descendant
        for descendant, _ in iter_descendants(node, cap, max_depth, active_only)
    ]


def get_path(node_id: int) -> list[HierarchyNode]:
    """Return ancestors from the root followed by the node itself."""
    node = get_node_or_raise(node_id)
    return list(reversed(get_ancestors(node_id))) + [node]


def get_path_string(node_id: int, separator: str = " > ") -> str:
    """Human-readable path such as ``Company > Engineering > Platform``."""
    return separator.join(node.get_display_name() for node in get_path(node_id))


def get_siblings(node_id: int, active_only: bool = True) -> list[HierarchyNode]:
    """Return nodes sharing this node's parent, excluding the node itself."""
    node = get_node_or_raise(node_id)
    query = HierarchyNode.query.filter(
        HierarchyNode.hierarchy_id == node.hierarchy_id,
        HierarchyNode.parent_id == node.parent_id,
        HierarchyNode.id != node.id,
    )
    if active_only:
        query = query.filter(HierarchyNode.is_active == True)  # noqa: E712
    return query.order_by(HierarchyNode.node_order, HierarchyNode.id).all()


def find_root_nodes(hierarchy_id: int, active_only: bool = True) -> list[HierarchyNode]:
    query = HierarchyNode.query.filter(
        HierarchyNode.hierarchy_id == hierarchy_id,
        HierarchyNode.parent_id.is_(None),
    )
    if active_only:
        query = query.filter(HierarchyNode.is_active == True)  # noqa: E712
    return query.order_by(HierarchyNode.node_order, HierarchyNode.id).all()


def find_nodes_by_hierarchy(
    hierarchy_id: int, active_only: bool = True
) -> list[HierarchyNode]:
    """Return every node in a hierarchy ordered by level, then sibling order."""
    query = HierarchyNode.query.filter(HierarchyNode.hierarchy_id == hierarchy_id)
    if active_only:
        query = query.filter(HierarchyNode.is_active == True)  # noqa: E712
    return query.order_by(
        HierarchyNode.level, HierarchyNode.node_order, HierarchyNode.id
    ).all()


def find_nodes_by_user(
    user_id: int, hierarchy_id: int | None = None
) -> list[HierarchyNode]:
    """Return the active nodes claimed by a user."""
    query = HierarchyNode.query.filter(
        HierarchyNode.user_id == user_id,
        HierarchyNode.is_active == True,  # noqa: E712
    )
    if hierarchy_id is not None:
        query = query.filter(HierarchyNode.hierarchy_id == hierarchy_id)
    return query.order_by(HierarchyNode.hierarchy_id, HierarchyNode.id).all()


def find_nodes_by_employee(
    employee_id: int, hierarchy_id: int | None = None
) -> list[HierarchyNode]:
    """Return the active nodes linked to an employee record."""
    query = HierarchyNode.query.filter(
        HierarchyNode.employee_id == employee_id,
        HierarchyNode.is_active == True,  # noqa: E712
    )
    if hierarchy_id is not None:
        query = query.filter(HierarchyNode.hierarchy_id == hierarchy_id)
    return query.order_by(HierarchyNode.hierarchy_id, HierarchyNode.id).all()


def get_subordinates(node_id: int, include_indirect: bool = True) -> list[HierarchyNode]:
    """Nodes below ``node_id``: the whole subtree, or only the children."""
    if get_node(node_id) is None:
        return []
    if include_indirect:
        return get_descendants(node_id)
    return get_children(node_id)


def get_superiors(node_id: int, include_indirect: bool = True) -> list[HierarchyNode]:
    """Nodes above ``node_id``: every ancestor, or only the parent."""
    node = get_node(node_id)
    if node is None:
        return []
    if include_indirect:
        return get_ancestors(node_id)
    parent = get_node(node.parent_id) if node.parent_id is not None else None
    return [parent] if parent is not None else []


# -- Derived field maintenance ---------------------------------------------


def refresh_subtree(node: HierarchyNode, cap: int) -> int:
    """
    Recompute ``level`` and ``materialized_path`` for a node and its subtree.

    The node's own values come from a live ancestor walk; descendants
    (inactive ones included) are then filled in top-down from their
    parents.  Flushes but does not commit.

    Returns:
        The number of nodes updated.
    """
    ancestors = walk_ancestors(node, cap)
    node.level = len(ancestors)
    node.materialized_path = build_path(
        [ancestor.id for ancestor in reversed(ancestors)] + [node.id]
    )
    db.session.flush()

    by_id = {node.id: node}
    count = 1
    for descendant, _ in iter_descendants(node, cap, active_only=False):
        parent = by_id[descendant.parent_id]
        descendant.level = parent.level + 1
        descendant.materialized_path = (
            f"{parent.materialized_path}{PATH_SEPARATOR}{descendant.id}"
        )
        by_id[descendant.id] = descendant
        count += 1
    db.session.flush()
    return count


def apply_parent(
    node: HierarchyNode,
    parent: HierarchyNode | None,
    node_order: int | None = None,
) -> int:
    """
    Point ``node`` at ``parent`` (None makes it a root) and refresh its subtree.

    Performs no validation; callers check cycles, depth and hierarchy
    membership first.  Flushes but does not commit.
    """
    node.parent_id = parent.id if parent is not None else None
    node.node_order = (
        node_order
        if node_order is not None
        else _next_order(node.hierarchy_id, node.parent_id, exclude_id=node.id)
    )
    db.session.flush()
    return refresh_subtree(node, traversal_cap(node.hierarchy))


def _next_order(
    hierarchy_id: int, parent_id: int | None, exclude_id: int | None = None
) -> int:
    query = db.session.query(func.max(HierarchyNode.node_order)).filter(
        HierarchyNode.hierarchy_id == hierarchy_id
    )
    if parent_id is None:
        query = query.filter(HierarchyNode.parent_id.is_(None))
    else:
        query = query.filter(HierarchyNode.parent_id == parent_id)
    if exclude_id is not None:
        query = query.filter(HierarchyNode.id != exclude_id)
    return (query.scalar() or 0) + 1


# -- Node creation ---------------------------------------------------------


def create_node(
    hierarchy_id: int,
    name: str,
    parent_id: int | None = None,
    node_type: str = "department",
    display_name: str | None = None,
    description: str | None = None,
    code: str | None = None,
    node_order: int | None = None,
    metadata: dict | None = None,
    organization_id: int | None = None,
    employee_id: int | None = None,
    user_id: int | None = None,
) -> HierarchyNode:
    """
    Create a node as a root or as the child of ``parent_id``.

    Args:
        hierarchy_id:    PK of the owning hierarchy.
        name:            Node name (required).
        parent_id:       Optional parent node in the same hierarchy.
        node_type:       One of ``NODE_TYPES``.
        node_order:      Sibling position; defaults to after the last
                         existing sibling.
        organization_id: Defaults to the hierarchy's organization.
        employee_id:     Optional link to an employee record.
        user_id:         ID of the user making the change (audit only).

    Returns:
        The new HierarchyNode with ``level`` and ``materialized_path`` set.

    Raises:
        InvalidEndpoint: If the hierarchy is missing or inactive.
        InvalidParent:   If ``parent_id`` does not resolve to an active
                         node in the same hierarchy.
        DepthExceeded:   If the node would sit below ``max_depth``.
        ValueError:      On a blank name or unknown node type.
    """
    if not name or not name.strip():
        raise ValueError("Node name is required.")
    if node_type not in NODE_TYPES:
        raise ValueError(f"Unknown node type '{node_type}'.")
    if node_order is not None and node_order < 1:
        raise ValueError("node_order must be 1 or greater.")

    hierarchy = _get_active_hierarchy(hierarchy_id)

    parent = None
    if parent_id is not None:
        parent = db.session.get(HierarchyNode, parent_id)
        if (
            parent is None
            or parent.hierarchy_id != hierarchy_id
            or not parent.is_active
        ):
            raise InvalidParent(
                f"Parent node ID {parent_id} does not resolve within "
                f"hierarchy {hierarchy_id}."
            )
        if parent.level + 1 > hierarchy.max_depth:
            raise DepthExceeded(
                f"A child of node {parent.id} would sit at level "
                f"{parent.level + 1}; hierarchy max depth is {hierarchy.max_depth}."
            )

    node = HierarchyNode(
        hierarchy_id=hierarchy_id,
        parent_id=parent_id,
        name=name.strip(),
        display_name=display_name,
        description=description,
        code=code,
        node_type=node_type,
        node_order=node_order or _next_order(hierarchy_id, parent_id),
        node_metadata=metadata or {},
        organization_id=organization_id or hierarchy.organization_id,
        employee_id=employee_id,
        level=0,
    )
    try:
        db.session.add(node)
        db.session.flush()
        refresh_subtree(node, traversal_cap(hierarchy))

        audit_service.log_change(
            user_id=user_id,
            action_type="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=node.id,
            new_value=node.to_dict(),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Created node %d '%s' in hierarchy %d at level %d",
        node.id,
        node.name,
        hierarchy_id,
        node.level,
    )
    return node


# -- Reparenting -----------------------------------------------------------


def reparent_node(
    node_id: int,
    new_parent_id: int | None,
    node_order: int | None = None,
    user_id: int | None = None,
) -> HierarchyNode:
    """
    Move a node (and its subtree) under a new parent, or make it a root.

    Levels and paths of the whole moved subtree are recomputed in the
    same transaction.

    Raises:
        InvalidEndpoint:   If the node is missing.
        InvalidParent:     If the new parent is missing or inactive.
        HierarchyMismatch: If the new parent is in another hierarchy.
        CircularReference: If the new parent is the node or one of its
                           descendants.
        DepthExceeded:     If any moved node would exceed ``max_depth``.
    """
    node = get_node_or_raise(node_id, for_update=True)
    hierarchy = node.hierarchy
    cap = traversal_cap(hierarchy)

    parent = None
    new_level = 0
    if new_parent_id is not None:
        if new_parent_id == node.id:
            raise CircularReference(f"Node {node.id} cannot be its own parent.")
        parent = db.session.get(HierarchyNode, new_parent_id)
        if parent is None or not parent.is_active:
            raise InvalidParent(f"Parent node ID {new_parent_id} not found or inactive.")
        if parent.hierarchy_id != node.hierarchy_id:
            raise HierarchyMismatch(
                f"Node {node.id} and parent {parent.id} belong to different hierarchies."
            )
        if is_descendant(node, parent.id, cap):
            raise CircularReference(
                f"Node {parent.id} is a descendant of node {node.id}."
            )
        new_level = parent.level + 1

    height = subtree_height(node, cap)
    if new_level + height > hierarchy.max_depth:
        raise DepthExceeded(
            f"Moving node {node.id} would place its subtree at level "
            f"{new_level + height}; hierarchy max depth is {hierarchy.max_depth}."
        )

    previous = {
        "parent_id": node.parent_id,
        "level": node.level,
        "materialized_path": node.materialized_path,
    }
    try:
        closed = _close_stale_parent_edges(node, new_parent_id)
        updated = apply_parent(node, parent, node_order)
        audit_service.log_change(
            user_id=user_id,
            action_type="MOVE",
            entity_type=ENTITY_TYPE,
            entity_id=node.id,
            previous_value=previous,
            new_value={
                "parent_id": node.parent_id,
                "level": node.level,
                "materialized_path": node.materialized_path,
                "closed_relationships": closed,
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to reparent node %d", node_id)
        raise

    logger.info(
        "Moved node %d under %s (%d nodes refreshed)", node.id, new_parent_id, updated
    )
    return node


def _close_stale_parent_edges(node: HierarchyNode, new_parent_id: int | None) -> int:
    """Deactivate hierarchical edges into ``node`` from anyone but ``new_parent_id``."""
    stale = HierarchyRelationship.query.filter(
        HierarchyRelationship.child_node_id == node.id,
        HierarchyRelationship.relationship_type == "hierarchical",
        HierarchyRelationship.is_active == True,  # noqa: E712
    )
    if new_parent_id is not None:
        stale = stale.filter(HierarchyRelationship.parent_node_id != new_parent_id)
    closed = 0
    now = utcnow()
    for relationship in stale.all():
        relationship.is_active = False
        relationship.effective_to = now
        closed += 1
    return closed


def reorder_children(node_id: int, user_id: int | None = None) -> list[HierarchyNode]:
    """Renumber a node's active children 1..n, keeping their current order."""
    children = get_children(node_id)
    try:
        for position, child in enumerate(children, start=1):
            child.node_order = position

        audit_service.log_change(
            user_id=user_id,
            action_type="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=node_id,
            new_value={"child_order": [child.id for child in children]},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return children


# -- Position validation ---------------------------------------------------


def validate_position(node_id: int) -> ValidationResult:
    """
    Check a node's cached level and path against its live parent chain.

    Never raises on a finding.  Issue types:
      - ``INVALID_ENDPOINT``     node not found
      - ``CIRCULAR_REFERENCE``   the parent chain loops or runs too deep
      - ``ORPHANED_NODE``        the parent pointer dangles
      - ``HIERARCHY_MISMATCH``   the parent sits in another hierarchy
      - ``LEVEL_INCONSISTENCY``  cached level differs from the chain
      - ``PATH_INCONSISTENCY``   cached path differs from the chain
    """
    result = ValidationResult(summary={"node_id": node_id})
    node = db.session.get(HierarchyNode, node_id)
    if node is None:
        result.issues.append(
            Finding("INVALID_ENDPOINT", f"Node ID {node_id} not found.")
        )
        return result

    try:
        ancestors = walk_ancestors(node, traversal_cap(node.hierarchy))
    except HierarchyIntegrityError as exc:
        result.issues.append(Finding("CIRCULAR_REFERENCE", exc.message))
        return result

    top = ancestors[-1] if ancestors else node
    if top.parent_id is not None:
        result.issues.append(
            Finding(
                "ORPHANED_NODE",
                f"Node {top.id} points at missing parent {top.parent_id}.",
                {"node_id": top.id, "parent_id": top.parent_id},
            )
        )
    if ancestors and ancestors[0].hierarchy_id != node.hierarchy_id:
        result.issues.append(
            Finding(
                "HIERARCHY_MISMATCH",
                f"Parent {ancestors[0].id} belongs to another hierarchy.",
                {"parent_id": ancestors[0].id},
            )
        )

    expected_level = len(ancestors)
    if node.level != expected_level:
        result.issues.append(
            Finding(
                "LEVEL_INCONSISTENCY",
                f"Node {node.id} has level {node.level}, expected {expected_level}.",
                {"expected": expected_level, "actual": node.level},
            )
        )

    expected_path = build_path(
        [ancestor.id for ancestor in reversed(ancestors)] + [node.id]
    )
    if node.materialized_path != expected_path:
        result.issues.append(
            Finding(
                "PATH_INCONSISTENCY",
                f"Node {node.id} has path '{node.materialized_path}', "
                f"expected '{expected_path}'.",
                {"expected": expected_path, "actual": node.materialized_path},
            )
        )

    if result.issues:
        logger.warning(
            "Node %d failed position validation: %s", node_id, result.issue_types()
        )
    return result


def rebuild_materialized_paths(hierarchy_id: int, user_id: int | None = None) -> int:
    """
    Recompute level and path for every node reachable from a root.

    Repair tool for drifted caches.  Nodes caught in a parent-pointer
    cycle are unreachable from any root and are left untouched; run
    ``audit_hierarchy`` to find them.

    Returns:
        The number of nodes updated.
    """
    hierarchy = db.session.get(HierarchyDefinition, hierarchy_id)
    if hierarchy is None:
        raise InvalidEndpoint(f"Hierarchy ID {hierarchy_id} not found.")
    cap = traversal_cap(hierarchy)

    try:
        count = 0
        for root in find_root_nodes(hierarchy_id, active_only=False):
            count += refresh_subtree(root, cap)

        audit_service.log_change(
            user_id=user_id,
            action_type="UPDATE",
            entity_type="hierarchy_definition",
            entity_id=hierarchy_id,
            new_value={"rebuilt_nodes": count},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.exception("Failed to rebuild paths for hierarchy %d", hierarchy_id)
        raise

    logger.info("Rebuilt materialized paths for %d nodes in hierarchy %d", count, hierarchy_id)
    return count


# -- Lifecycle and claims --------------------------------------------------


def deactivate_node(node_id: int, user_id: int | None = None) -> HierarchyNode:
    """
    Soft-deactivate a node.

    Raises:
        NodeHasActiveChildren: If any child is still active; move or
            deactivate the children first.
    """
    node = get_node_or_raise(node_id, active_only=True)
    active_children = _children_query(node.id).count()
    if active_children:
        raise NodeHasActiveChildren(
            f"Node {node.id} has {active_children} active children."
        )

    try:
        node.is_active = False
        node.effective_to = utcnow()
        audit_service.log_change(
            user_id=user_id,
            action_type="DEACTIVATE",
            entity_type=ENTITY_TYPE,
            entity_id=node.id,
            previous_value={"is_active": True},
            new_value={"is_active": False},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Deactivated node %d", node.id)
    return node


def claim_node(
    node_id: int, claimant_id: int, user_id: int | None = None
) -> HierarchyNode:
    """
    Assign ``claimant_id`` as the user holding a node.

    Re-claiming by the current holder is a no-op.

    Raises:
        NodeAlreadyClaimed: If another user holds the node.
    """
    node = get_node_or_raise(node_id, active_only=True, for_update=True)
    if node.user_id == claimant_id:
        return node
    if node.user_id is not None:
        raise NodeAlreadyClaimed(
            f"Node {node.id} is already claimed by user {node.user_id}."
        )

    try:
        node.user_id = claimant_id
        audit_service.log_change(
            user_id=user_id,
            action_type="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=node.id,
            previous_value={"user_id": None},
            new_value={"user_id": claimant_id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return node


def release_node(node_id: int, user_id: int | None = None) -> HierarchyNode:
    node = get_node_or_raise(node_id, for_update=True)
    if node.user_id is None:
        return node

    previous = {"user_id": node.user_id}
    try:
        node.user_id = None
        audit_service.log_change(
            user_id=user_id,
            action_type="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=node.id,
            previous_value=previous,
            new_value={"user_id": None},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return node
