"""
Routes for the roles blueprint: role lifecycle and permission queries.
"""

from flask import request
from flask_login import current_user, login_required

from orgtree.blueprints.roles import bp
from orgtree.decorators import permission_required
from orgtree.services import permission_service, role_service

CREATE_FIELDS = (
    "role_type",
    "scope",
    "priority",
    "config",
    "conditions",
    "hierarchy_id",
    "node_id",
    "display_name",
    "description",
    "code",
    "permissions",
)


def _payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object.")
    return data


def _only(data: dict, allowed) -> dict:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValueError(f"Unexpected fields: {unknown}")
    return data


def _role_ids(data: dict) -> list[int]:
    role_ids = data.get("role_ids")
    if not isinstance(role_ids, list) or not role_ids:
        raise ValueError("'role_ids' must be a non-empty list.")
    return role_ids


# =========================================================================
# Roles
# =========================================================================


@bp.route("")
@login_required
def list_roles():
    """Roles in the caller's organization, highest priority first."""
    include_inactive = request.args.get("show_inactive", "0") == "1"
    roles = role_service.find_roles_by_organization(
        current_user.organization_id, active_only=not include_inactive
    )
    return {"roles": [role.to_dict() for role in roles]}


@bp.route("", methods=["POST"])
@login_required
@permission_required("role", "create")
def create_role():
    data = _payload()
    if not data.get("name"):
        raise ValueError("Missing required fields: name")
    role = role_service.create_role(
        organization_id=current_user.organization_id,
        name=data["name"],
        user_id=current_user.id,
        **{key: data[key] for key in CREATE_FIELDS if key in data},
    )
    return role.to_dict(), 201


@bp.route("/<int:role_id>")
@login_required
def role_detail(role_id):
    return role_service.get_role_or_raise(role_id).to_dict()


@bp.route("/<int:role_id>", methods=["PATCH"])
@login_required
@permission_required("role", "update")
def update_role(role_id):
    changes = _only(_payload(), role_service.UPDATABLE_FIELDS)
    role = role_service.update_role(role_id, user_id=current_user.id, **changes)
    return role.to_dict()


@bp.route("/<int:role_id>/validate")
@login_required
def validate_role(role_id):
    return role_service.validate_role(role_id).to_dict()


@bp.route("/<int:role_id>/activate", methods=["POST"])
@login_required
@permission_required("role", "activate")
def activate_role(role_id):
    return role_service.activate_role(role_id, user_id=current_user.id).to_dict()


@bp.route("/<int:role_id>/deactivate", methods=["POST"])
@login_required
@permission_required("role", "deactivate")
def deactivate_role(role_id):
    return role_service.deactivate_role(role_id, user_id=current_user.id).to_dict()


@bp.route("/<int:role_id>/clone", methods=["POST"])
@login_required
@permission_required("role", "create")
def clone_role(role_id):
    data = _only(_payload(), ("name",) + role_service.CLONE_OVERRIDES)
    clone = role_service.clone_role(
        role_id,
        name=data.pop("name", None),
        user_id=current_user.id,
        **data,
    )
    return clone.to_dict(), 201


@bp.route("/bulk-activate", methods=["POST"])
@login_required
@permission_required("role", "activate")
def bulk_activate():
    count = role_service.bulk_activate_roles(
        _role_ids(_payload()), user_id=current_user.id
    )
    return {"activated": count}


@bp.route("/bulk-deactivate", methods=["POST"])
@login_required
@permission_required("role", "deactivate")
def bulk_deactivate():
    count = role_service.bulk_deactivate_roles(
        _role_ids(_payload()), user_id=current_user.id
    )
    return {"deactivated": count}


# =========================================================================
# Permissions
# =========================================================================


@bp.route("/<int:role_id>/permissions")
@login_required
def role_permissions(role_id):
    """Active permissions in resolution order, optionally filtered."""
    permissions = permission_service.get_permissions(
        role_id,
        node_id=request.args.get("node_id", type=int),
        resource_type=request.args.get("resource_type"),
        action=request.args.get("action"),
    )
    return {"permissions": [permission.to_dict() for permission in permissions]}


@bp.route("/<int:role_id>/permissions", methods=["POST"])
@login_required
@permission_required("permission", "create")
def add_permission(role_id):
    data = _payload()
    if not data.get("resource_type") or not data.get("action"):
        raise ValueError("Missing required fields: resource_type, action")
    permission = permission_service.add_permission(
        role_id,
        resource_type=data["resource_type"],
        action=data["action"],
        effect=data.get("effect", "allow"),
        priority=data.get("priority", 100),
        node_id=data.get("node_id"),
        conditions=data.get("conditions"),
        metadata=data.get("metadata"),
        user_id=current_user.id,
    )
    return permission.to_dict(), 201


@bp.route("/<int:role_id>/effective-permissions")
@login_required
def effective_permissions(role_id):
    return {
        "role_id": role_id,
        "permissions": permission_service.get_effective_permissions(
            role_id,
            node_id=request.args.get("node_id", type=int),
            resource_type=request.args.get("resource_type"),
        ),
    }


@bp.route("/<int:role_id>/check")
@login_required
def check_permission(role_id):
    """Answer ``?action=...&resource_type=...`` with deny-override rules."""
    action = request.args.get("action")
    resource_type = request.args.get("resource_type")
    if not action or not resource_type:
        raise ValueError("Query parameters 'action' and 'resource_type' are required.")
    allowed = permission_service.has_permission(
        role_id,
        action,
        resource_type,
        node_id=request.args.get("node_id", type=int),
    )
    return {
        "role_id": role_id,
        "action": action,
        "resource_type": resource_type,
        "allowed": allowed,
    }


@bp.route("/evaluate")
@login_required
def evaluate_permission():
    """
    Resolve ``?action=...&resource_type=...`` for the signed-in caller.

    Direct grants, the caller's role and grants on ``node_id`` and its
    ancestors all apply, filtered by their conditions.
    """
    action = request.args.get("action")
    resource_type = request.args.get("resource_type")
    if not action or not resource_type:
        raise ValueError("Query parameters 'action' and 'resource_type' are required.")
    context = {}
    node_id = request.args.get("node_id", type=int)
    if node_id is not None:
        context["user_node_id"] = node_id

    decision = permission_service.evaluate_permission(
        current_user.id, action, resource_type, context
    )
    permission = decision["permission"]
    return {
        "action": action,
        "resource_type": resource_type,
        "allowed": decision["allowed"],
        "reason": decision["reason"],
        "permission": permission.to_dict() if permission is not None else None,
    }


@bp.route("/permissions/<int:permission_id>/conflicts")
@login_required
def permission_conflicts(permission_id):
    conflicts = permission_service.check_conflicts(permission_id)
    return {
        "permission_id": permission_id,
        "conflicts": [finding.to_dict() for finding in conflicts],
    }
