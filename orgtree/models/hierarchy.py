"""
Hierarchy structure models: definitions, nodes, and relationships.

A ``HierarchyDefinition`` owns a forest of ``HierarchyNode`` rows linked
by ``parent_id`` pointers.  Each node caches its ``level`` and its
``materialized_path`` (ancestor ids plus its own id joined with ``/``)
for fast subtree queries such as ``materialized_path LIKE '1/4/%'``.
The cached fields are maintained by ``node_service`` and are never
edited directly.

``HierarchyRelationship`` rows are typed, weighted edges between two
nodes of the same hierarchy.  Only ``hierarchical`` edges drive the
parent pointers; the other types are auxiliary graph edges.
"""

from datetime import datetime

from orgtree.extensions import db
from orgtree.models.columns import created_at_column, updated_at_column, utcnow

# Separator used when joining ids into a materialized path.
PATH_SEPARATOR = "/"

HIERARCHY_TYPES = (
    "organizational",
    "reporting",
    "matrix",
    "functional",
    "project",
    "geographical",
)

NODE_TYPES = ("department", "team", "position", "role", "location", "custom")

RELATIONSHIP_TYPES = ("hierarchical", "matrix", "functional", "geographical", "custom")


class HierarchyDefinition(db.Model):
    """
    Named, typed container for a forest of nodes.

    ``max_depth`` bounds node levels: a node at level ``max_depth`` is
    allowed, one below it is not.  It also bounds every tree walk.
    """

    __tablename__ = "hierarchy_definition"
    __table_args__ = (
        db.CheckConstraint(
            "max_depth >= 1 AND max_depth <= 50", name="CK_hierarchy_max_depth"
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    hierarchy_type = db.Column(db.String(20), nullable=False, default="organizational")
    max_depth = db.Column(db.Integer, nullable=False, default=10)
    config = db.Column(db.JSON, nullable=True, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.Integer, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    # -- Relationships -----------------------------------------------------
    nodes = db.relationship("HierarchyNode", back_populates="hierarchy", lazy="dynamic")
    relationships = db.relationship(
        "HierarchyRelationship", back_populates="hierarchy", lazy="dynamic"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "hierarchy_type": self.hierarchy_type,
            "max_depth": self.max_depth,
            "config": self.config or {},
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<HierarchyDefinition {self.id}: {self.name} (max_depth={self.max_depth})>"


class HierarchyNode(db.Model):
    """
    One organizational unit in a hierarchy's tree.

    ``level`` equals the number of ancestors and ``materialized_path``
    equals the ancestor chain plus the node itself.  Both are derived
    from the live ``parent_id`` chain and recomputed after every create
    and reparent.  Nodes are soft-deactivated, never deleted.

    ``user_id`` and ``employee_id`` are non-owning claims: a node is
    claimed by at most one user at a time.
    """

    __tablename__ = "hierarchy_node"
    __table_args__ = (
        db.CheckConstraint("level >= 0", name="CK_node_level"),
        db.CheckConstraint("node_order >= 1", name="CK_node_order"),
        db.Index("IX_node_hierarchy_parent", "hierarchy_id", "parent_id"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    hierarchy_id = db.Column(
        db.Integer,
        db.ForeignKey("hierarchy_definition.id"),
        nullable=False,
        index=True,
    )
    parent_id = db.Column(
        db.Integer, db.ForeignKey("hierarchy_node.id"), nullable=True, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    display_name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)
    code = db.Column(db.String(100), nullable=True, unique=True)
    node_type = db.Column(db.String(20), nullable=False, default="department")
    level = db.Column(db.Integer, nullable=False, default=0)
    node_order = db.Column(db.Integer, nullable=False, default=1)
    materialized_path = db.Column(db.Text, nullable=True, index=True)
    node_metadata = db.Column("metadata", db.JSON, nullable=True, default=dict)
    # use_alter breaks the node -> user -> role -> node FK cycle at DDL time.
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("app_user.id", use_alter=True, name="FK_node_user"),
        nullable=True,
    )
    employee_id = db.Column(db.Integer, nullable=True, index=True)
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_from = db.Column(db.DateTime, nullable=True, default=utcnow)
    effective_to = db.Column(db.DateTime, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    # -- Relationships -----------------------------------------------------
    hierarchy = db.relationship("HierarchyDefinition", back_populates="nodes")
    parent = db.relationship("HierarchyNode", remote_side=[id], foreign_keys=[parent_id])
    user = db.relationship("User", foreign_keys=[user_id])

    # ---- Convenience properties ------------------------------------------

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    @property
    def path_ids(self) -> list[int]:
        """The cached materialized path split back into node ids."""
        if not self.materialized_path:
            return []
        return [int(part) for part in self.materialized_path.split(PATH_SEPARATOR)]

    def get_display_name(self) -> str:
        return self.display_name or self.name

    def get_node_code(self) -> str:
        return self.code or f"NODE-{self.id:08d}"

    def is_effective(self, at: datetime | None = None) -> bool:
        """True when ``at`` (default now) falls in the effective window."""
        at = at or utcnow()
        if self.effective_from is not None and at < self.effective_from:
            return False
        return self.effective_to is None or at <= self.effective_to

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "hierarchy_id": self.hierarchy_id,
            "parent_id": self.parent_id,
            "name": self.name,
            "display_name": self.get_display_name(),
            "code": self.code,
            "node_type": self.node_type,
            "level": self.level,
            "node_order": self.node_order,
            "materialized_path": self.materialized_path,
            "metadata": self.node_metadata or {},
            "user_id": self.user_id,
            "employee_id": self.employee_id,
            "organization_id": self.organization_id,
            "is_active": self.is_active,
        }

    def __repr__(self) -> str:
        return f"<HierarchyNode {self.id}: {self.name} path={self.materialized_path}>"


class HierarchyRelationship(db.Model):
    """
    Typed, weighted edge between two nodes in the same hierarchy.

    Removal is a soft-deactivation (``is_active`` cleared and
    ``effective_to`` stamped) so edge history is preserved.
    """

    __tablename__ = "hierarchy_relationship"
    __table_args__ = (
        db.CheckConstraint(
            "strength >= 0 AND strength <= 1", name="CK_relationship_strength"
        ),
        db.CheckConstraint("weight >= 0", name="CK_relationship_weight"),
        db.Index(
            "IX_relationship_child_type_active",
            "child_node_id",
            "relationship_type",
            "is_active",
        ),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    hierarchy_id = db.Column(
        db.Integer,
        db.ForeignKey("hierarchy_definition.id"),
        nullable=False,
        index=True,
    )
    parent_node_id = db.Column(
        db.Integer, db.ForeignKey("hierarchy_node.id"), nullable=False, index=True
    )
    child_node_id = db.Column(
        db.Integer, db.ForeignKey("hierarchy_node.id"), nullable=False, index=True
    )
    relationship_type = db.Column(db.String(20), nullable=False, default="hierarchical")
    strength = db.Column(db.Float, nullable=False, default=1.0)
    weight = db.Column(db.Float, nullable=False, default=1.0)
    relationship_metadata = db.Column("metadata", db.JSON, nullable=True, default=dict)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    effective_from = db.Column(db.DateTime, nullable=False, default=utcnow)
    effective_to = db.Column(db.DateTime, nullable=True)
    created_by = db.Column(db.Integer, nullable=True)
    updated_by = db.Column(db.Integer, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    # -- Relationships -----------------------------------------------------
    hierarchy = db.relationship("HierarchyDefinition", back_populates="relationships")
    parent_node = db.relationship("HierarchyNode", foreign_keys=[parent_node_id])
    child_node = db.relationship("HierarchyNode", foreign_keys=[child_node_id])

    @property
    def is_hierarchical(self) -> bool:
        return self.relationship_type == "hierarchical"

    def is_effective(self, at: datetime | None = None) -> bool:
        at = at or utcnow()
        if at < self.effective_from:
            return False
        return self.effective_to is None or at <= self.effective_to

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "hierarchy_id": self.hierarchy_id,
            "parent_node_id": self.parent_node_id,
            "child_node_id": self.child_node_id,
            "relationship_type": self.relationship_type,
            "strength": self.strength,
            "weight": self.weight,
            "metadata": self.relationship_metadata or {},
            "is_active": self.is_active,
            "effective_to": (
                self.effective_to.isoformat() if self.effective_to else None
            ),
        }

    def __repr__(self) -> str:
        return (
            f"<HierarchyRelationship {self.id}: {self.parent_node_id}"
            f" -[{self.relationship_type}]-> {self.child_node_id}>"
        )
