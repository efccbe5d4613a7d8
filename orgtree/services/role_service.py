"""
Role service: create, validate, activate, deactivate and clone roles.

A role's configuration is parsed into its typed variant
(``orgtree.models.role_config``) whenever it is written, so malformed
configs are rejected at construction.  ``validate_role`` re-checks the
stored row (name uniqueness, hierarchy/node binding, config) without
raising; ``activate_role`` raises on its first finding.

System roles (``is_system``) cannot be updated or deactivated.
"""

import logging
from typing import Any

from orgtree.errors import (
    DuplicateRoleName,
    HierarchyMismatch,
    InvalidConfig,
    InvalidEndpoint,
    MissingConditions,
    MissingInheritanceRules,
    OrgTreeError,
    RoleValidationError,
    SystemRoleImmutable,
)
from orgtree.extensions import db
from orgtree.models.columns import utcnow
from orgtree.models.hierarchy import HierarchyDefinition, HierarchyNode
from orgtree.models.role import ROLE_SCOPES, Permission, Role
from orgtree.models.role_config import dump_role_config, parse_role_config
from orgtree.services import audit_service, permission_service
from orgtree.services.validation import Finding, ValidationResult

logger = logging.getLogger(__name__)

ENTITY_TYPE = "dynamic_role"

# Finding type -> error raised when the finding blocks activation.
_ERRORS_BY_FINDING: dict[str, type[OrgTreeError]] = {
    "DUPLICATE_ROLE_NAME": DuplicateRoleName,
    "INVALID_HIERARCHY": InvalidEndpoint,
    "INVALID_NODE": InvalidEndpoint,
    "HIERARCHY_ORGANIZATION_MISMATCH": HierarchyMismatch,
    "NODE_ORGANIZATION_MISMATCH": HierarchyMismatch,
    "HIERARCHY_NODE_MISMATCH": HierarchyMismatch,
    "MISSING_INHERITANCE_RULES": MissingInheritanceRules,
    "MISSING_CONDITIONS": MissingConditions,
    "INVALID_CONFIG": InvalidConfig,
}

UPDATABLE_FIELDS = (
    "name",
    "display_name",
    "description",
    "scope",
    "priority",
    "config",
    "conditions",
    "effective_to",
)

CLONE_OVERRIDES = (
    "display_name",
    "description",
    "priority",
    "scope",
    "hierarchy_id",
    "node_id",
)


# -- Lookups ---------------------------------------------------------------


def get_role(role_id: int) -> Role | None:
    """Return a role by primary key, or None if not found."""
    return db.session.get(Role, role_id)


def get_role_or_raise(role_id: int) -> Role:
    role = get_role(role_id)
    if role is None:
        raise InvalidEndpoint(f"Role ID {role_id} not found.")
    return role


def _find_roles(active_only: bool = True, **filters):
    query = Role.query.filter_by(**filters)
    if active_only:
        query = query.filter(Role.is_active == True)  # noqa: E712
    return query.order_by(Role.priority.desc(), Role.name).all()


def find_roles_by_organization(
    organization_id: int, active_only: bool = True
) -> list[Role]:
    """Return an organization's roles, highest priority first."""
    return _find_roles(active_only, organization_id=organization_id)


def find_roles_by_hierarchy(hierarchy_id: int, active_only: bool = True) -> list[Role]:
    return _find_roles(active_only, hierarchy_id=hierarchy_id)


def find_roles_by_node(node_id: int, active_only: bool = True) -> list[Role]:
    return _find_roles(active_only, node_id=node_id)


def find_roles_by_type(
    role_type: str, organization_id: int | None = None
) -> list[Role]:
    if organization_id is None:
        return _find_roles(True, role_type=role_type)
    return _find_roles(True, role_type=role_type, organization_id=organization_id)


# -- Validation ------------------------------------------------------------


def _name_taken(
    organization_id: int, name: str, exclude_role_id: int | None = None
) -> bool:
    query = Role.query.filter(
        Role.organization_id == organization_id,
        Role.name == name,
        Role.is_active == True,  # noqa: E712
    )
    if exclude_role_id is not None:
        query = query.filter(Role.id != exclude_role_id)
    return db.session.query(query.exists()).scalar()


def _binding_findings(
    organization_id: int, hierarchy_id: int | None, node_id: int | None
) -> list[Finding]:
    """Check that a hierarchy/node binding exists and belongs together."""
    findings = []
    if hierarchy_id is not None:
        hierarchy = db.session.get(HierarchyDefinition, hierarchy_id)
        if hierarchy is None:
            findings.append(
                Finding("INVALID_HIERARCHY", f"Hierarchy ID {hierarchy_id} does not exist.")
            )
        elif hierarchy.organization_id != organization_id:
            findings.append(
                Finding(
                    "HIERARCHY_ORGANIZATION_MISMATCH",
                    "Role and hierarchy belong to different organizations.",
                )
            )

    if node_id is not None:
        node = db.session.get(HierarchyNode, node_id)
        if node is None:
            findings.append(Finding("INVALID_NODE", f"Node ID {node_id} does not exist."))
        else:
            if node.organization_id != organization_id:
                findings.append(
                    Finding(
                        "NODE_ORGANIZATION_MISMATCH",
                        "Role and node belong to different organizations.",
                    )
                )
            if hierarchy_id is not None and node.hierarchy_id != hierarchy_id:
                findings.append(
                    Finding(
                        "HIERARCHY_NODE_MISMATCH",
                        f"Node {node_id} does not belong to hierarchy {hierarchy_id}.",
                    )
                )
    return findings


def _raise_for(findings: list[Finding]) -> None:
    first = findings[0]
    error_class = _ERRORS_BY_FINDING.get(first.type, RoleValidationError)
    raise error_class(first.message, issues=[finding.to_dict() for finding in findings])


def validate_role(role_id: int) -> ValidationResult:
    """
    Check a stored role without changing it.

    Issue types: ``DUPLICATE_ROLE_NAME``, ``INVALID_HIERARCHY``,
    ``INVALID_NODE``, ``HIERARCHY_ORGANIZATION_MISMATCH``,
    ``NODE_ORGANIZATION_MISMATCH``, ``HIERARCHY_NODE_MISMATCH``,
    ``MISSING_INHERITANCE_RULES``, ``MISSING_CONDITIONS``,
    ``INVALID_CONFIG``.
    """
    role = get_role_or_raise(role_id)
    result = ValidationResult(summary={"role_id": role.id})

    if _name_taken(role.organization_id, role.name, exclude_role_id=role.id):
        result.issues.append(
            Finding(
                "DUPLICATE_ROLE_NAME",
                f"Role name '{role.name}' already exists in this organization.",
            )
        )

    result.issues.extend(
        _binding_findings(role.organization_id, role.hierarchy_id, role.node_id)
    )

    try:
        parse_role_config(role.role_type, role.config)
    except RoleValidationError as exc:
        result.issues.append(Finding(exc.code, exc.message))

    return result


# -- Creation --------------------------------------------------------------


def create_role(
    organization_id: int,
    name: str,
    role_type: str = "static",
    scope: str = "organization",
    priority: int = 100,
    config: dict | str | None = None,
    conditions: dict | None = None,
    hierarchy_id: int | None = None,
    node_id: int | None = None,
    display_name: str | None = None,
    description: str | None = None,
    code: str | None = None,
    is_system: bool = False,
    permissions: list[dict] | None = None,
    user_id: int | None = None,
) -> Role:
    """
    Create an active role and, optionally, its permissions in one transaction.

    Args:
        organization_id: Owning organization.
        name:            Role name, unique among the organization's active roles.
        role_type:       One of ``ROLE_TYPES``; selects the config variant.
        config:          Role config (dict or JSON string) for ``role_type``.
        hierarchy_id:    Optional hierarchy binding.
        node_id:         Optional node binding (must sit in ``hierarchy_id``
                         when both are given).
        permissions:     Dicts of ``add_permission`` keyword arguments.
        user_id:         ID of the user making the change.

    Raises:
        InvalidConfig, MissingInheritanceRules, MissingConditions:
            The config does not fit ``role_type``.
        DuplicateRoleName: Another active role already has ``name``.
        InvalidEndpoint, HierarchyMismatch: Bad hierarchy/node binding.
        ValueError: On a blank name, unknown scope or out-of-range priority.
    """
    if not name or not name.strip():
        raise ValueError("Role name is required.")
    if scope not in ROLE_SCOPES:
        raise ValueError(f"Unknown role scope '{scope}'.")
    if not permission_service.MIN_PRIORITY <= priority <= permission_service.MAX_PRIORITY:
        raise ValueError(f"priority must be between 0 and 1000, got {priority}.")

    typed_config = parse_role_config(role_type, config)
    name = name.strip()

    findings = _binding_findings(organization_id, hierarchy_id, node_id)
    if _name_taken(organization_id, name):
        findings.insert(
            0,
            Finding(
                "DUPLICATE_ROLE_NAME",
                f"Role name '{name}' already exists in this organization.",
            ),
        )
    if findings:
        logger.warning("Rejected role '%s': %s", name, [f.type for f in findings])
        _raise_for(findings)

    now = utcnow()
    try:
        role = Role(
            organization_id=organization_id,
            name=name,
            display_name=display_name,
            description=description,
            code=code,
            role_type=role_type,
            scope=scope,
            priority=priority,
            config=dump_role_config(typed_config),
            conditions=conditions or {},
            hierarchy_id=hierarchy_id,
            node_id=node_id,
            is_active=True,
            is_system=is_system,
            activated_at=now,
            created_by=user_id,
            updated_by=user_id,
        )
        db.session.add(role)
        db.session.flush()

        for entry in permissions or []:
            permission_service.build_permission(
                organization_id=organization_id,
                role_id=role.id,
                created_by=user_id,
                **entry,
            )

        audit_service.log_change(
            user_id=user_id,
            action_type="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=role.id,
            new_value={**role.to_dict(), "permission_count": len(permissions or [])},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Created %s role %d '%s'", role_type, role.id, role.name)
    return role


# -- Lifecycle -------------------------------------------------------------


def _activate(role: Role, user_id: int | None) -> None:
    """Validate and activate one role (no commit)."""
    result = validate_role(role.id)
    if not result.is_valid:
        logger.warning(
            "Cannot activate role %d: %s", role.id, result.issue_types()
        )
        _raise_for(result.issues)

    role.is_active = True
    role.activated_at = utcnow()
    role.updated_by = user_id
    audit_service.log_change(
        user_id=user_id,
        action_type="ACTIVATE",
        entity_type=ENTITY_TYPE,
        entity_id=role.id,
        new_value={"is_active": True},
    )


def activate_role(role_id: int, user_id: int | None = None) -> Role:
    """
    Activate a role after re-validating it.

    Raises:
        DuplicateRoleName, MissingInheritanceRules, MissingConditions,
        InvalidConfig, InvalidEndpoint, HierarchyMismatch: The first
            validation finding, with every finding in ``issues``.
    """
    role = get_role_or_raise(role_id)
    try:
        _activate(role, user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Activated role %d", role.id)
    return role


def _deactivate(role: Role, user_id: int | None) -> int:
    """Deactivate one role and its active permissions (no commit)."""
    if role.is_system:
        raise SystemRoleImmutable(f"System role '{role.name}' cannot be deactivated.")

    role.is_active = False
    role.deactivated_at = utcnow()
    role.updated_by = user_id

    permissions = Permission.query.filter_by(role_id=role.id, is_active=True).all()
    for permission in permissions:
        permission.is_active = False
        permission.effective_to = role.deactivated_at

    audit_service.log_change(
        user_id=user_id,
        action_type="DEACTIVATE",
        entity_type=ENTITY_TYPE,
        entity_id=role.id,
        previous_value={"is_active": True},
        new_value={"is_active": False, "deactivated_permissions": len(permissions)},
    )
    return len(permissions)


def deactivate_role(role_id: int, user_id: int | None = None) -> Role:
    """
    Deactivate a role and every active permission attached to it.

    Raises:
        SystemRoleImmutable: If the role is a system role.
    """
    role = get_role_or_raise(role_id)
    try:
        count = _deactivate(role, user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Deactivated role %d and %d permissions", role.id, count)
    return role


def bulk_activate_roles(role_ids: list[int], user_id: int | None = None) -> int:
    """
    Activate several roles in one transaction.

    Already-active roles are skipped.  Any missing or invalid role aborts
    the whole batch.

    Returns:
        The number of roles activated.
    """
    activated = 0
    try:
        for role_id in role_ids:
            role = get_role_or_raise(role_id)
            if role.is_active:
                continue
            _activate(role, user_id)
            # Flush so later roles in the batch see this one's name as taken.
            db.session.flush()
            activated += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Bulk activated %d roles", activated)
    return activated


def bulk_deactivate_roles(role_ids: list[int], user_id: int | None = None) -> int:
    """
    Deactivate several roles (and their permissions) in one transaction.

    Already-inactive roles are skipped.  A missing or system role aborts
    the whole batch.
    """
    deactivated = 0
    try:
        for role_id in role_ids:
            role = get_role_or_raise(role_id)
            if not role.is_active:
                continue
            _deactivate(role, user_id)
            deactivated += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Bulk deactivated %d roles", deactivated)
    return deactivated


def update_role(role_id: int, user_id: int | None = None, **changes: Any) -> Role:
    """
    Change a role's editable fields (see ``UPDATABLE_FIELDS``).

    Raises:
        SystemRoleImmutable: If the role is a system role.
        DuplicateRoleName:   If a new name is taken by another active role.
        InvalidConfig, MissingInheritanceRules, MissingConditions:
            A new config does not fit the role type.
        ValueError: On an unknown field, scope or out-of-range priority.
    """
    role = get_role_or_raise(role_id)
    if role.is_system:
        raise SystemRoleImmutable(f"System role '{role.name}' cannot be modified.")

    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update role fields: {sorted(unknown)}")
    if "scope" in changes and changes["scope"] not in ROLE_SCOPES:
        raise ValueError(f"Unknown role scope '{changes['scope']}'.")
    if "priority" in changes and not (
        permission_service.MIN_PRIORITY
        <= changes["priority"]
        <= permission_service.MAX_PRIORITY
    ):
        raise ValueError(f"priority must be between 0 and 1000, got {changes['priority']}.")
    if "config" in changes:
        changes["config"] = dump_role_config(
            parse_role_config(role.role_type, changes["config"])
        )
    if "name" in changes:
        changes["name"] = (changes["name"] or "").strip()
        if not changes["name"]:
            raise ValueError("Role name is required.")
        if role.is_active and _name_taken(
            role.organization_id, changes["name"], exclude_role_id=role.id
        ):
            raise DuplicateRoleName(
                f"Role name '{changes['name']}' already exists in this organization."
            )

    previous = {field: getattr(role, field) for field in changes}
    try:
        for field, value in changes.items():
            setattr(role, field, value)
        role.updated_by = user_id

        audit_service.log_change(
            user_id=user_id,
            action_type="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=role.id,
            previous_value=previous,
            new_value=changes,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return role


def clone_role(
    source_role_id: int,
    name: str | None = None,
    user_id: int | None = None,
    **overrides: Any,
) -> Role:
    """
    Copy a role and its active permissions under a new identity.

    The clone is never a system role and gets no ``code``.  ``name``
    defaults to ``"<source name> (Copy)"``; ``overrides`` may replace
    ``display_name``, ``description``, ``priority``, ``scope``,
    ``hierarchy_id`` or ``node_id``.

    Raises:
        InvalidEndpoint:   If the source role does not exist.
        DuplicateRoleName: If the clone's name is already taken.
    """
    source = get_role_or_raise(source_role_id)
    unknown = set(overrides) - set(CLONE_OVERRIDES)
    if unknown:
        raise ValueError(f"Cannot override role fields: {sorted(unknown)}")

    clone_name = (name or f"{source.name} (Copy)").strip()
    if _name_taken(source.organization_id, clone_name):
        raise DuplicateRoleName(
            f"Role name '{clone_name}' already exists in this organization."
        )

    fields = {
        "display_name": source.display_name,
        "description": source.description,
        "priority": source.priority,
        "scope": source.scope,
        "hierarchy_id": source.hierarchy_id,
        "node_id": source.node_id,
        **overrides,
    }
    findings = _binding_findings(
        source.organization_id, fields["hierarchy_id"], fields["node_id"]
    )
    if findings:
        _raise_for(findings)

    source_permissions = Permission.query.filter_by(
        role_id=source.id, is_active=True
    ).order_by(Permission.id).all()

    try:
        clone = Role(
            organization_id=source.organization_id,
            name=clone_name,
            role_type=source.role_type,
            config=dict(source.config or {}),
            conditions=dict(source.conditions or {}),
            is_active=True,
            is_system=False,
            effective_from=utcnow(),
            activated_at=utcnow(),
            created_by=user_id,
            updated_by=user_id,
            **fields,
        )
        db.session.add(clone)
        db.session.flush()

        for permission in source_permissions:
            db.session.add(
                Permission(
                    organization_id=permission.organization_id,
                    role_id=clone.id,
                    node_id=permission.node_id,
                    user_id=permission.user_id,
                    resource_type=permission.resource_type,
                    action=permission.action,
                    effect=permission.effect,
                    priority=permission.priority,
                    conditions=dict(permission.conditions or {}),
                    permission_metadata=dict(permission.permission_metadata or {}),
                    created_by=user_id,
                )
            )
        db.session.flush()

        audit_service.log_change(
            user_id=user_id,
            action_type="CLONE",
            entity_type=ENTITY_TYPE,
            entity_id=clone.id,
            previous_value={"source_role_id": source.id},
            new_value={**clone.to_dict(), "permission_count": len(source_permissions)},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Cloned role %d into %d with %d permissions",
        source.id,
        clone.id,
        len(source_permissions),
    )
    return clone
