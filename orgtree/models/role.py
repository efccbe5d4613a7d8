"""
Role and permission models.

A ``Role`` is a named, prioritized bundle of permission intent that may
be bound to a hierarchy or to one of its nodes.  ``Permission`` rows
attach (resource type, action, effect, priority) rules to a role or
directly to a node context.  Resolution lives in
``permission_service``; these models only store the rows.

Role = what a principal may do.  The node binding = where it applies.
"""

from datetime import datetime

from orgtree.extensions import db
from orgtree.models.columns import created_at_column, updated_at_column, utcnow
from orgtree.models.role_config import RoleConfig, parse_role_config

ROLE_SCOPES = ("global", "organization", "hierarchy", "node", "custom")

PERMISSION_EFFECTS = ("allow", "deny")


class Role(db.Model):
    """
    Dynamic role scoped to an organization.

    Names are unique per organization among active roles.  System roles
    (``is_system``) cannot be modified or deactivated.  ``priority``
    ranges 0-1000; higher wins.
    """

    __tablename__ = "dynamic_role"
    __table_args__ = (
        db.CheckConstraint(
            "priority >= 0 AND priority <= 1000", name="CK_role_priority"
        ),
        db.Index("IX_role_org_name", "organization_id", "name"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    code = db.Column(db.String(100), nullable=True, unique=True)
    role_type = db.Column(db.String(20), nullable=False, default="static")
    scope = db.Column(db.String(20), nullable=False, default="organization")
    priority = db.Column(db.Integer, nullable=False, default=100)
    config = db.Column(db.JSON, nullable=True, default=dict)
    conditions = db.Column(db.JSON, nullable=True, default=dict)
    hierarchy_id = db.Column(
        db.Integer, db.ForeignKey("hierarchy_definition.id"), nullable=True, index=True
    )
    node_id = db.Column(
        db.Integer, db.ForeignKey("hierarchy_node.id"), nullable=True, index=True
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_system = db.Column(db.Boolean, nullable=False, default=False)
    effective_from = db.Column(db.DateTime, nullable=False, default=utcnow)
    effective_to = db.Column(db.DateTime, nullable=True)
    activated_at = db.Column(db.DateTime, nullable=True)
    deactivated_at = db.Column(db.DateTime, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    # -- Relationships -----------------------------------------------------
    hierarchy = db.relationship("HierarchyDefinition")
    node = db.relationship("HierarchyNode")
    permissions = db.relationship(
        "Permission", back_populates="role", lazy="dynamic"
    )
    users = db.relationship("User", back_populates="role", lazy="dynamic")

    @property
    def typed_config(self) -> RoleConfig:
        """The stored config parsed into its role-type variant."""
        return parse_role_config(self.role_type, self.config)

    def get_display_name(self) -> str:
        return self.display_name or self.name

    def get_role_code(self) -> str:
        return self.code or f"ROLE-{self.id:08d}"

    def is_effective(self, at: datetime | None = None) -> bool:
        at = at or utcnow()
        if at < self.effective_from:
            return False
        return self.effective_to is None or at <= self.effective_to

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "display_name": self.get_display_name(),
            "role_type": self.role_type,
            "scope": self.scope,
            "priority": self.priority,
            "config": self.config or {},
            "hierarchy_id": self.hierarchy_id,
            "node_id": self.node_id,
            "is_active": self.is_active,
            "is_system": self.is_system,
        }

    def __repr__(self) -> str:
        return f"<Role {self.id}: {self.name} priority={self.priority}>"


class Permission(db.Model):
    """
    One allow/deny rule for a ``resource_type:action`` key.

    Belongs to a role, or directly to a node/user context when
    ``role_id`` is NULL.  Multiple rules may share a key; resolution
    orders them by ``priority`` descending, then ``created_at`` and
    ``id`` ascending.
    """

    __tablename__ = "contextual_permission"
    __table_args__ = (
        db.CheckConstraint(
            "priority >= 0 AND priority <= 1000", name="CK_permission_priority"
        ),
        db.CheckConstraint("effect IN ('allow', 'deny')", name="CK_permission_effect"),
        db.Index("IX_permission_role_key", "role_id", "resource_type", "action"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    role_id = db.Column(
        db.Integer, db.ForeignKey("dynamic_role.id"), nullable=True, index=True
    )
    node_id = db.Column(
        db.Integer, db.ForeignKey("hierarchy_node.id"), nullable=True, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    resource_type = db.Column(db.String(100), nullable=False)
    action = db.Column(db.String(100), nullable=False)
    effect = db.Column(db.String(10), nullable=False, default="allow")
    priority = db.Column(db.Integer, nullable=False, default=100)
    conditions = db.Column(db.JSON, nullable=True, default=dict)
    permission_metadata = db.Column("metadata", db.JSON, nullable=True, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_from = db.Column(db.DateTime, nullable=False, default=utcnow)
    effective_to = db.Column(db.DateTime, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    # -- Relationships -----------------------------------------------------
    role = db.relationship("Role", back_populates="permissions")
    node = db.relationship("HierarchyNode")

    @property
    def key(self) -> str:
        """Resolution key, e.g. ``employee:read``."""
        return f"{self.resource_type}:{self.action}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role_id": self.role_id,
            "node_id": self.node_id,
            "user_id": self.user_id,
            "resource_type": self.resource_type,
            "action": self.action,
            "effect": self.effect,
            "priority": self.priority,
            "conditions": self.conditions or {},
            "metadata": self.permission_metadata or {},
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<Permission {self.key} {self.effect} p={self.priority}>"
