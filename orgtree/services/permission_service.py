"""
Permission service: resolve what a role may do.

Two query modes read the same ordered permission list (priority
descending, then creation time and id ascending) but resolve it
differently:

  - ``has_permission``: any matching deny wins, then any allow,
    otherwise deny by default.
  - ``get_effective_permissions``: per ``resource_type:action`` key the
    first permission in priority order is kept, whatever its effect.

Callers rely on both behaviours; do not merge them.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from orgtree.errors import InvalidEndpoint
from orgtree.extensions import db
from orgtree.models.columns import utcnow
from orgtree.models.hierarchy import HierarchyNode
from orgtree.models.role import PERMISSION_EFFECTS, Permission, Role
from orgtree.models.user import User
from orgtree.services import audit_service, node_service
from orgtree.services.validation import Finding, ValidationResult

logger = logging.getLogger(__name__)

MIN_PRIORITY = 0
MAX_PRIORITY = 1000

CONDITION_OPERATORS = ("AND", "OR")


def _get_role_or_raise(role_id: int) -> Role:
    role = db.session.get(Role, role_id)
    if role is None:
        raise InvalidEndpoint(f"Role ID {role_id} not found.")
    return role


def _ordered(query):
    return query.order_by(
        Permission.priority.desc(), Permission.created_at, Permission.id
    )


# -- Resolution ------------------------------------------------------------


def get_permissions(
    role_id: int,
    node_id: int | None = None,
    resource_type: str | None = None,
    action: str | None = None,
) -> list[Permission]:
    """
    Return a role's active permissions in resolution order.

    Args:
        role_id:       PK of the role.
        node_id:       Only permissions bound to this node.
        resource_type: Only permissions on this resource type.
        action:        Only permissions for this action.

    Returns:
        Permissions ordered by priority (highest first), then creation
        time and id (oldest first).

    Raises:
        InvalidEndpoint: If the role does not exist.
    """
    _get_role_or_raise(role_id)

    query = Permission.query.filter(
        Permission.role_id == role_id,
        Permission.is_active == True,  # noqa: E712
    )
    if node_id is not None:
        query = query.filter(Permission.node_id == node_id)
    if resource_type is not None:
        query = query.filter(Permission.resource_type == resource_type)
    if action is not None:
        query = query.filter(Permission.action == action)
    return _ordered(query).all()


def has_permission(
    role_id: int, action: str, resource_type: str, node_id: int | None = None
) -> bool:
    """
    True when the role may perform ``action`` on ``resource_type``.

    Any matching deny returns False regardless of priority.  Otherwise
    any matching allow returns True.  No match at all returns False.
    """
    permissions = get_permissions(
        role_id, node_id=node_id, resource_type=resource_type, action=action
    )
    if any(permission.effect == "deny" for permission in permissions):
        return False
    return any(permission.effect == "allow" for permission in permissions)


def get_effective_permissions(
    role_id: int,
    node_id: int | None = None,
    resource_type: str | None = None,
) -> dict[str, dict[str, Any]]:
    """
    Map each ``resource_type:action`` key to its highest-priority permission.

    Ties go to the oldest permission.  Deny is not privileged here: an
    allow at a higher priority than a deny is what this returns.
    """
    effective: dict[str, dict[str, Any]] = {}
    for permission in get_permissions(
        role_id, node_id=node_id, resource_type=resource_type
    ):
        if permission.key in effective:
            continue
        effective[permission.key] = {
            "permission_id": permission.id,
            "effect": permission.effect,
            "priority": permission.priority,
            "conditions": permission.conditions or {},
            "metadata": permission.permission_metadata or {},
        }
    return effective


# -- Caller resolution -----------------------------------------------------

WILDCARD_ACTION = "*"


def _find_permissions(active_only: bool, *criteria) -> list[Permission]:
    query = Permission.query.filter(*criteria)
    if active_only:
        query = query.filter(Permission.is_active == True)  # noqa: E712
    return _ordered(query).all()


def find_permissions_by_role(role_id: int, active_only: bool = True) -> list[Permission]:
    return _find_permissions(active_only, Permission.role_id == role_id)


def find_permissions_by_user(user_id: int, active_only: bool = True) -> list[Permission]:
    """Permissions granted to a user directly, not through a role."""
    return _find_permissions(active_only, Permission.user_id == user_id)


def find_permissions_by_node(node_id: int, active_only: bool = True) -> list[Permission]:
    return _find_permissions(active_only, Permission.node_id == node_id)


def find_permissions_by_resource_and_action(
    resource_type: str,
    action: str,
    organization_id: int | None = None,
    active_only: bool = True,
) -> list[Permission]:
    criteria = [Permission.resource_type == resource_type, Permission.action == action]
    if organization_id is not None:
        criteria.append(Permission.organization_id == organization_id)
    return _find_permissions(active_only, *criteria)


def _caller_permissions(user_id: int, context: dict) -> list[Permission]:
    """
    Collect the active permissions that reach a caller.

    Sources: direct user grants, the roles in ``context["role_ids"]``
    (the user's own role when absent), and grants on
    ``context["user_node_id"]`` and every ancestor of that node.
    """
    permissions = find_permissions_by_user(user_id)

    role_ids = context.get("role_ids")
    if role_ids is None:
        user = db.session.get(User, user_id)
        role_ids = [user.role_id] if user is not None and user.role_id else []
    for role_id in role_ids:
        permissions.extend(find_permissions_by_role(role_id))

    node_id = context.get("user_node_id")
    if node_id and node_service.get_node(node_id) is not None:
        permissions.extend(find_permissions_by_node(node_id))
        for ancestor in node_service.get_ancestors(node_id):
            permissions.extend(find_permissions_by_node(ancestor.id))

    # A row bound to both the user and one of the roles is counted once.
    return list({permission.id: permission for permission in permissions}.values())


def evaluate_permission(
    user_id: int, action: str, resource_type: str, context: dict | None = None
) -> dict[str, Any]:
    """
    Decide whether a user may perform ``action`` on ``resource_type``.

    Permissions from every source in ``_caller_permissions`` that match
    the resource type and either the action or ``"*"`` are filtered by
    ``evaluate_conditions``.  Of those, any deny wins, then any allow,
    otherwise the answer is deny.

    Args:
        user_id:       PK of the caller.
        action:        Requested action, e.g. ``"read"``.
        resource_type: Requested resource type, e.g. ``"employee"``.
        context:       ``role_ids`` and ``user_node_id`` select the
                       sources; every key is also passed to
                       ``evaluate_conditions``.

    Returns:
        Dict with ``allowed`` (bool), ``permission`` (the deciding
        Permission or None) and ``reason``.
    """
    context = {"user_id": user_id, **(context or {})}

    applicable = [
        permission
        for permission in _caller_permissions(user_id, context)
        if permission.resource_type == resource_type
        and permission.action in (action, WILDCARD_ACTION)
        and evaluate_conditions(permission, context)
    ]
    applicable.sort(key=lambda p: (-p.priority, p.created_at, p.id))

    for effect, reason in (("deny", "Explicitly denied"), ("allow", "Explicitly allowed")):
        for permission in applicable:
            if permission.effect == effect:
                return {
                    "allowed": effect == "allow",
                    "permission": permission,
                    "reason": reason,
                }
    return {"allowed": False, "permission": None, "reason": "No applicable permission found"}


# -- Permission rows -------------------------------------------------------


def validate_permission_fields(
    resource_type: str, action: str, effect: str, priority: int, conditions: dict | None
) -> None:
    """
    Check plain field values shared by every permission write.

    Raises:
        ValueError: On a blank key, unknown effect, out-of-range priority
            or an unknown condition operator.
    """
    if not resource_type or not action:
        raise ValueError("resource_type and action are required.")
    if effect not in PERMISSION_EFFECTS:
        raise ValueError(f"effect must be one of {PERMISSION_EFFECTS}, got '{effect}'.")
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValueError(
            f"priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}, got {priority}."
        )
    operator = (conditions or {}).get("operator", "AND")
    if operator not in CONDITION_OPERATORS:
        raise ValueError(f"Unknown condition operator '{operator}'.")


def build_permission(
    organization_id: int,
    resource_type: str,
    action: str,
    effect: str = "allow",
    priority: int = 100,
    role_id: int | None = None,
    node_id: int | None = None,
    user_id: int | None = None,
    conditions: dict | None = None,
    metadata: dict | None = None,
    created_by: int | None = None,
) -> Permission:
    """Validate fields and add a Permission to the session (no commit)."""
    validate_permission_fields(resource_type, action, effect, priority, conditions)
    if node_id is not None and db.session.get(HierarchyNode, node_id) is None:
        raise InvalidEndpoint(f"Node ID {node_id} not found.")

    permission = Permission(
        organization_id=organization_id,
        role_id=role_id,
        node_id=node_id,
        user_id=user_id,
        resource_type=resource_type,
        action=action,
        effect=effect,
        priority=priority,
        conditions=conditions or {},
        permission_metadata=metadata or {},
        created_by=created_by,
    )
    db.session.add(permission)
    db.session.flush()
    return permission


def add_permission(
    role_id: int,
    resource_type: str,
    action: str,
    effect: str = "allow",
    priority: int = 100,
    node_id: int | None = None,
    conditions: dict | None = None,
    metadata: dict | None = None,
    user_id: int | None = None,
) -> Permission:
    """
    Attach a permission to a role.

    Raises:
        InvalidEndpoint: If the role or node does not exist.
        ValueError:      On invalid field values.
    """
    role = _get_role_or_raise(role_id)
    try:
        permission = build_permission(
            organization_id=role.organization_id,
            resource_type=resource_type,
            action=action,
            effect=effect,
            priority=priority,
            role_id=role.id,
            node_id=node_id,
            conditions=conditions,
            metadata=metadata,
            created_by=user_id,
        )
        audit_service.log_change(
            user_id=user_id,
            action_type="CREATE",
            entity_type="contextual_permission",
            entity_id=permission.id,
            new_value=permission.to_dict(),
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Added %s permission %s (priority %d) to role %d",
        effect,
        permission.key,
        priority,
        role.id,
    )
    return permission


def bulk_create_permissions(
    entries: list[dict], user_id: int | None = None
) -> list[Permission]:
    """
    Create several permissions in one transaction.

    Each entry holds the keyword arguments of ``build_permission``
    (``organization_id``, ``resource_type``, ``action`` and optional
    ``effect``, ``priority``, ``role_id``, ``node_id``, ``user_id``,
    ``conditions``, ``metadata``).  Any failure rolls back the batch.
    """
    created = []
    try:
        for index, entry in enumerate(entries):
            try:
                permission = build_permission(**entry, created_by=user_id)
            except (InvalidEndpoint, ValueError):
                logger.warning("Bulk permission entry %d rejected", index)
                raise
            audit_service.log_change(
                user_id=user_id,
                action_type="CREATE",
                entity_type="contextual_permission",
                entity_id=permission.id,
                new_value=permission.to_dict(),
            )
            created.append(permission)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Bulk created %d permissions", len(created))
    return created


# -- Conditions ------------------------------------------------------------


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def _naive_utc(value: Any) -> datetime:
    """Return ``value`` as a naive UTC datetime; ISO strings may carry an offset."""
    if not isinstance(value, datetime):
        if isinstance(value, str) and value.endswith("Z"):
            value = value[:-1] + "+00:00"
        value = datetime.fromisoformat(value)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _time_constraints_met(constraints: dict, context: dict) -> bool:
    now = _naive_utc(context.get("timestamp") or utcnow())

    time_of_day = constraints.get("time_of_day")
    if time_of_day:
        current = now.hour * 60 + now.minute
        start = _minutes(time_of_day["start"])
        end = _minutes(time_of_day["end"])
        if start <= end:
            if current < start or current > end:
                return False
        # Window wraps past midnight, e.g. 22:00-06:00.
        elif end < current < start:
            return False

    # 0 = Sunday through 6 = Saturday.
    days = constraints.get("days_of_week")
    if days and (now.isoweekday() % 7) not in days:
        return False

    date_range = constraints.get("date_range")
    if date_range:
        if now < _naive_utc(date_range["start"]) or now > _naive_utc(
            date_range["end"]
        ):
            return False
    return True


def _location_constraints_met(constraints: dict, context: dict) -> bool:
    location = context.get("location")
    if not location:
        return False
    if "allowed_ips" in constraints and location.get("ip") not in constraints["allowed_ips"]:
        return False
    if location.get("ip") in constraints.get("blocked_ips", ()):
        return False
    if (
        "allowed_countries" in constraints
        and location.get("country") not in constraints["allowed_countries"]
    ):
        return False
    if (
        "allowed_regions" in constraints
        and location.get("region") not in constraints["allowed_regions"]
    ):
        return False
    return True


def _hierarchy_constraints_met(constraints: dict, context: dict) -> bool:
    node_id = context.get("user_node_id") or context.get("node_id")
    if not node_id:
        return False
    node = db.session.get(HierarchyNode, node_id)
    if node is None:
        return False

    if "min_level" in constraints and node.level < constraints["min_level"]:
        return False
    if "max_level" in constraints and node.level > constraints["max_level"]:
        return False
    if "allowed_nodes" in constraints and node_id not in constraints["allowed_nodes"]:
        return False
    if node_id in constraints.get("blocked_nodes", ()):
        return False

    allowed_departments = constraints.get("allowed_departments")
    if allowed_departments:
        chain = [node] + node_service.get_ancestors(node.id)
        departments = {n.id for n in chain if n.node_type == "department"}
        if not departments.intersection(allowed_departments):
            return False
    return True


def _resource_constraints_met(constraints: dict, context: dict) -> bool:
    resource = context.get("resource")
    if not resource:
        return True
    if constraints.get("owner_only") and resource.get("owner_id") != context.get("user_id"):
        return False
    for attribute, allowed_values in constraints.get("attributes", {}).items():
        if resource.get(attribute) and resource[attribute] not in allowed_values:
            return False
    allowed_states = constraints.get("allowed_states")
    if allowed_states and resource.get("state") and resource["state"] not in allowed_states:
        return False
    return True


_CONSTRAINT_CHECKS = (
    ("time_constraints", _time_constraints_met),
    ("location_constraints", _location_constraints_met),
    ("hierarchy_constraints", _hierarchy_constraints_met),
    ("resource_constraints", _resource_constraints_met),
)


def evaluate_conditions(permission: Permission, context: dict | None = None) -> bool:
    """
    Decide whether a permission's conditions hold in ``context``.

    ``context`` keys: ``timestamp`` (naive UTC datetime), ``node_id`` or
    ``user_node_id``, ``user_id``, ``resource`` (dict) and ``location``
    (dict with ``ip``, ``country``, ``region``).  Constraint groups are
    combined with the conditions' ``operator`` (``AND`` by default, or
    ``OR``).  A permission without conditions always applies.
    """
    conditions = permission.conditions or {}
    context = context or {}

    results = [
        check(conditions[name], context)
        for name, check in _CONSTRAINT_CHECKS
        if conditions.get(name)
    ]
    if not results:
        return True

    operator = conditions.get("operator", "AND")
    if operator == "AND":
        return all(results)
    if operator == "OR":
        return any(results)
    return False


# -- Conflict detection ----------------------------------------------------


def _contexts_overlap(first: Permission, second: Permission) -> bool:
    for attribute in ("role_id", "user_id", "node_id"):
        value = getattr(first, attribute)
        if value is not None and value == getattr(second, attribute):
            return True
    # An unbound permission applies everywhere.
    return any(
        p.role_id is None and p.user_id is None and p.node_id is None
        for p in (first, second)
    )


def check_conflicts(permission_id: int) -> list[Finding]:
    """
    Return active permissions that contradict this one.

    A conflict is the same organization and ``resource_type:action``
    with the opposite effect, bound to an overlapping role, user or node.
    """
    permission = db.session.get(Permission, permission_id)
    if permission is None:
        raise InvalidEndpoint(f"Permission ID {permission_id} not found.")

    candidates = _ordered(
        Permission.query.filter(
            Permission.organization_id == permission.organization_id,
            Permission.resource_type == permission.resource_type,
            Permission.action == permission.action,
            Permission.effect != permission.effect,
            Permission.is_active == True,  # noqa: E712
            Permission.id != permission.id,
        )
    ).all()

    return [
        Finding(
            "EFFECT_CONFLICT",
            f"Conflicting permission effect for {permission.key}.",
            {"conflicting_permission_id": other.id},
        )
        for other in candidates
        if _contexts_overlap(permission, other)
    ]


def validate_organization_permissions(organization_id: int) -> ValidationResult:
    """Run ``check_conflicts`` over every active permission in an organization."""
    permissions = Permission.query.filter_by(
        organization_id=organization_id, is_active=True
    ).all()
    result = ValidationResult()
    for permission in permissions:
        for finding in check_conflicts(permission.id):
            finding.details["permission_id"] = permission.id
            result.issues.append(finding)
    result.summary = {
        "organization_id": organization_id,
        "permission_count": len(permissions),
    }
    return result
