"""
Routes for the hierarchy blueprint: hierarchies, nodes, relationships.

Every route requires a signed-in user.  Mutating routes also require
the user's role to grant the matching ``resource_type:action``
permission.  Domain errors raised by the services are turned into JSON
responses by the application's error handlers.
"""

from flask import request
from flask_login import current_user, login_required

from orgtree.blueprints.hierarchy import bp
from orgtree.decorators import permission_required
from orgtree.services import (
    hierarchy_service,
    node_service,
    relationship_service,
)


def _payload() -> dict:
    """Return the JSON request body (an empty dict when absent)."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")
    return data


def _require(data: dict, *keys: str) -> None:
    missing = [key for key in keys if data.get(key) in (None, "")]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")


def _nodes(nodes) -> dict:
    return {"nodes": [node.to_dict() for node in nodes]}


def _relationships(relationships) -> dict:
    return {"relationships": [rel.to_dict() for rel in relationships]}


# =========================================================================
# Hierarchies
# =========================================================================


@bp.route("/hierarchies")
@login_required
def list_hierarchies():
    """List hierarchies in the current user's organization."""
    include_inactive = request.args.get("show_inactive", "0") == "1"
    hierarchies = hierarchy_service.find_hierarchies_by_organization(
        current_user.organization_id, include_inactive=include_inactive
    )
    return {"hierarchies": [h.to_dict() for h in hierarchies]}


@bp.route("/hierarchies", methods=["POST"])
@login_required
@permission_required("hierarchy_definition", "create")
def create_hierarchy():
    data = _payload()
    _require(data, "name")
    hierarchy = hierarchy_service.create_hierarchy(
        organization_id=current_user.organization_id,
        name=data["name"],
        hierarchy_type=data.get("hierarchy_type", "organizational"),
        max_depth=data.get("max_depth"),
        description=data.get("description"),
        config=data.get("config"),
        user_id=current_user.id,
    )
    return hierarchy.to_dict(), 201


@bp.route("/hierarchies/<int:hierarchy_id>")
@login_required
def hierarchy_detail(hierarchy_id):
    hierarchy = hierarchy_service.get_hierarchy_or_raise(hierarchy_id)
    return {
        **hierarchy.to_dict(),
        "max_depth_in_use": hierarchy_service.get_max_depth_in_use(hierarchy_id),
    }


@bp.route("/hierarchies/<int:hierarchy_id>/nodes")
@login_required
def hierarchy_nodes(hierarchy_id):
    """All nodes of a hierarchy ordered by level, then sibling order."""
    include_inactive = request.args.get("show_inactive", "0") == "1"
    return _nodes(
        node_service.find_nodes_by_hierarchy(
            hierarchy_id, active_only=not include_inactive
        )
    )


@bp.route("/hierarchies/<int:hierarchy_id>/roots")
@login_required
def hierarchy_roots(hierarchy_id):
    return _nodes(node_service.find_root_nodes(hierarchy_id))


@bp.route("/hierarchies/<int:hierarchy_id>/relationships")
@login_required
def hierarchy_relationships(hierarchy_id):
    return _relationships(
        relationship_service.find_relationships_by_hierarchy(
            hierarchy_id, relationship_type=request.args.get("type")
        )
    )


@bp.route("/hierarchies/<int:hierarchy_id>/audit")
@login_required
def audit_hierarchy(hierarchy_id):
    """Position and depth audit across every node (read-only)."""
    return hierarchy_service.audit_hierarchy(hierarchy_id).to_dict()


@bp.route("/hierarchies/<int:hierarchy_id>/integrity")
@login_required
def hierarchy_integrity(hierarchy_id):
    """Re-validate every active relationship (read-only)."""
    return relationship_service.validate_hierarchy_integrity(hierarchy_id).to_dict()


@bp.route("/hierarchies/<int:hierarchy_id>/rebuild-paths", methods=["POST"])
@login_required
@permission_required("hierarchy_definition", "update")
def rebuild_paths(hierarchy_id):
    count = node_service.rebuild_materialized_paths(
        hierarchy_id, user_id=current_user.id
    )
    return {"hierarchy_id": hierarchy_id, "rebuilt_nodes": count}


# =========================================================================
# Nodes
# =========================================================================


@bp.route("/nodes", methods=["POST"])
@login_required
@permission_required("hierarchy_node", "create")
def create_node():
    """Create a root node, or a child when ``parent_id`` is given."""
    data = _payload()
    _require(data, "hierarchy_id", "name")
    node = node_service.create_node(
        hierarchy_id=data["hierarchy_id"],
        name=data["name"],
        parent_id=data.get("parent_id"),
        node_type=data.get("node_type", "department"),
        display_name=data.get("display_name"),
        description=data.get("description"),
        code=data.get("code"),
        node_order=data.get("node_order"),
        metadata=data.get("metadata"),
        employee_id=data.get("employee_id"),
        user_id=current_user.id,
    )
    return node.to_dict(), 201


@bp.route("/nodes/<int:node_id>")
@login_required
def node_detail(node_id):
    return node_service.get_node_or_raise(node_id).to_dict()


@bp.route("/nodes/<int:node_id>/children")
@login_required
def node_children(node_id):
    include_inactive = request.args.get("show_inactive", "0") == "1"
    return _nodes(node_service.get_children(node_id, active_only=not include_inactive))


@bp.route("/nodes/<int:node_id>/ancestors")
@login_required
def node_ancestors(node_id):
    """Ancestors from the immediate parent up to the root."""
    return _nodes(node_service.get_ancestors(node_id))


@bp.route("/nodes/<int:node_id>/descendants")
@login_required
def node_descendants(node_id):
    max_depth = request.args.get("max_depth", type=int)
    return _nodes(node_service.get_descendants(node_id, max_depth=max_depth))


@bp.route("/nodes/<int:node_id>/path")
@login_required
def node_path(node_id):
    return {
        **_nodes(node_service.get_path(node_id)),
        "path": node_service.get_path_string(node_id),
    }


@bp.route("/nodes/<int:node_id>/siblings")
@login_required
def node_siblings(node_id):
    return _nodes(node_service.get_siblings(node_id))


@bp.route("/nodes/<int:node_id>/relationships")
@login_required
def node_relationships(node_id):
    direction = request.args.get("direction", "both")
    return _relationships(
        relationship_service.find_relationships_by_node(node_id, direction=direction)
    )


@bp.route("/nodes/<int:node_id>/validate")
@login_required
def validate_node(node_id):
    return node_service.validate_position(node_id).to_dict()


@bp.route("/nodes/<int:node_id>/move", methods=["POST"])
@login_required
@permission_required("hierarchy_node", "move")
def move_node(node_id):
    """Reparent a node; a null ``parent_id`` makes it a root."""
    data = _payload()
    if "parent_id" not in data:
        raise ValueError("Missing required fields: parent_id")
    node = node_service.reparent_node(
        node_id,
        data["parent_id"],
        node_order=data.get("node_order"),
        user_id=current_user.id,
    )
    return node.to_dict()


@bp.route("/nodes/<int:node_id>/reorder", methods=["POST"])
@login_required
@permission_required("hierarchy_node", "update")
def reorder_node_children(node_id):
    return _nodes(node_service.reorder_children(node_id, user_id=current_user.id))


@bp.route("/nodes/<int:node_id>/deactivate", methods=["POST"])
@login_required
@permission_required("hierarchy_node", "deactivate")
def deactivate_node(node_id):
    return node_service.deactivate_node(node_id, user_id=current_user.id).to_dict()


@bp.route("/nodes/<int:node_id>/claim", methods=["POST"])
@login_required
@permission_required("hierarchy_node", "claim")
def claim_node(node_id):
    """Claim a node for ``user_id`` (defaults to the caller)."""
    data = _payload()
    node = node_service.claim_node(
        node_id, data.get("user_id", current_user.id), user_id=current_user.id
    )
    return node.to_dict()


@bp.route("/nodes/<int:node_id>/release", methods=["POST"])
@login_required
@permission_required("hierarchy_node", "claim")
def release_node(node_id):
    return node_service.release_node(node_id, user_id=current_user.id).to_dict()


# =========================================================================
# Relationships
# =========================================================================


def _relationship_kwargs(entry: dict) -> dict:
    _require(
        entry, "parent_node_id", "child_node_id", "relationship_type", "hierarchy_id"
    )
    kwargs = {
        key: entry[key]
        for key in ("parent_node_id", "child_node_id", "relationship_type", "hierarchy_id")
    }
    for key in ("strength", "weight", "metadata"):
        if key in entry:
            kwargs[key] = entry[key]
    return kwargs


@bp.route("/relationships", methods=["POST"])
@login_required
@permission_required("hierarchy_relationship", "create")
def create_relationship():
    relationship = relationship_service.create_relationship(
        **_relationship_kwargs(_payload()), user_id=current_user.id
    )
    return relationship.to_dict(), 201


@bp.route("/relationships/bulk", methods=["POST"])
@login_required
@permission_required("hierarchy_relationship", "create")
def bulk_create_relationships():
    """Create every listed relationship or none of them."""
    entries = _payload().get("relationships")
    if not isinstance(entries, list) or not entries:
        raise ValueError("'relationships' must be a non-empty list.")
    created = relationship_service.bulk_create_relationships(
        [_relationship_kwargs(entry) for entry in entries], user_id=current_user.id
    )
    return _relationships(created), 201


@bp.route("/relationships/<int:relationship_id>")
@login_required
def relationship_detail(relationship_id):
    relationship = relationship_service.get_relationship(relationship_id)
    if relationship is None:
        return {"error": "NOT_FOUND", "message": "Relationship not found."}, 404
    return relationship.to_dict()


@bp.route("/relationships/<int:relationship_id>/remove", methods=["POST"])
@login_required
@permission_required("hierarchy_relationship", "delete")
def remove_relationship(relationship_id):
    relationship = relationship_service.remove_relationship(
        relationship_id, user_id=current_user.id
    )
    return relationship.to_dict()
