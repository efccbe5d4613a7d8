"""Create hierarchy, role, permission, user and audit tables

Revision ID: a1c4e7d20b31
Revises:
Create Date: 2026-10-19 09:12:44.318204

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c4e7d20b31"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    """Create every table; the node -> user FK is added last to break the cycle."""
    op.create_table(
        "hierarchy_definition",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("hierarchy_type", sa.String(20), nullable=False),
        sa.Column("max_depth", sa.Integer(), nullable=False),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "max_depth >= 1 AND max_depth <= 50", name="CK_hierarchy_max_depth"
        ),
    )

    op.create_table(
        "hierarchy_node",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "hierarchy_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_definition.id"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "parent_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_node.id"),
            nullable=True,
            index=True,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("code", sa.String(100), nullable=True, unique=True),
        sa.Column("node_type", sa.String(20), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("node_order", sa.Integer(), nullable=False),
        sa.Column("materialized_path", sa.Text(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("employee_id", sa.Integer(), nullable=True, index=True),
        sa.Column("organization_id", sa.Integer(), nullable=False, index=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=True),
        sa.Column("effective_to", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("level >= 0", name="CK_node_level"),
        sa.CheckConstraint("node_order >= 1", name="CK_node_order"),
    )
    op.create_index(
        "IX_node_hierarchy_parent", "hierarchy_node", ["hierarchy_id", "parent_id"]
    )
    op.create_index(
        "ix_hierarchy_node_materialized_path", "hierarchy_node", ["materialized_path"]
    )

    op.create_table(
        "hierarchy_relationship",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "hierarchy_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_definition.id"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "parent_node_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_node.id"),
            nullable=False,
            index=True,
        ),
        sa.Column(
            "child_node_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_node.id"),
            nullable=False,
            index=True,
        ),
        sa.Column("relationship_type", sa.String(20), nullable=False),
        sa.Column("strength", sa.Float(), nullable=False),
        sa.Column("weight", sa.Float(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("effective_to", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "strength >= 0 AND strength <= 1", name="CK_relationship_strength"
        ),
        sa.CheckConstraint("weight >= 0", name="CK_relationship_weight"),
    )
    op.create_index(
        "IX_relationship_child_type_active",
        "hierarchy_relationship",
        ["child_node_id", "relationship_type", "is_active"],
    )

    op.create_table(
        "dynamic_role",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("code", sa.String(100), nullable=True, unique=True),
        sa.Column("role_type", sa.String(20), nullable=False),
        sa.Column("scope", sa.String(20), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("config", sa.JSON(), nullable=True),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column(
            "hierarchy_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_definition.id"),
            nullable=True,
            index=True,
        ),
        sa.Column(
            "node_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_node.id"),
            nullable=True,
            index=True,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_system", sa.Boolean(), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("effective_to", sa.DateTime(), nullable=True),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("deactivated_at", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "priority >= 0 AND priority <= 1000", name="CK_role_priority"
        ),
    )
    op.create_index("IX_role_org_name", "dynamic_role", ["organization_id", "name"])

    op.create_table(
        "app_user",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False, index=True),
        sa.Column("email", sa.String(200), nullable=False, unique=True),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column(
            "role_id", sa.Integer(), sa.ForeignKey("dynamic_role.id"), nullable=True
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "contextual_permission",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.Integer(), nullable=False, index=True),
        sa.Column(
            "role_id",
            sa.Integer(),
            sa.ForeignKey("dynamic_role.id"),
            nullable=True,
            index=True,
        ),
        sa.Column(
            "node_id",
            sa.Integer(),
            sa.ForeignKey("hierarchy_node.id"),
            nullable=True,
            index=True,
        ),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("app_user.id"), nullable=True
        ),
        sa.Column("resource_type", sa.String(100), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("effect", sa.String(10), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("effective_from", sa.DateTime(), nullable=False),
        sa.Column("effective_to", sa.DateTime(), nullable=True),
        sa.Column("created_by", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "priority >= 0 AND priority <= 1000", name="CK_permission_priority"
        ),
        sa.CheckConstraint("effect IN ('allow', 'deny')", name="CK_permission_effect"),
    )
    op.create_index(
        "IX_permission_role_key",
        "contextual_permission",
        ["role_id", "resource_type", "action"],
    )

    op.create_table(
        "audit_log",
        sa.Column(
            "id",
            sa.BigInteger().with_variant(sa.Integer(), "sqlite"),
            primary_key=True,
            autoincrement=True,
        ),
        sa.Column(
            "user_id", sa.Integer(), sa.ForeignKey("app_user.id"), nullable=True
        ),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("previous_value", sa.Text(), nullable=True),
        sa.Column("new_value", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(500), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    # Batch mode so SQLite can add the constraint by copying the table.
    with op.batch_alter_table("hierarchy_node") as batch_op:
        batch_op.create_foreign_key("FK_node_user", "app_user", ["user_id"], ["id"])


def downgrade():
    """Drop every table created in upgrade()."""
    with op.batch_alter_table("hierarchy_node") as batch_op:
        batch_op.drop_constraint("FK_node_user", type_="foreignkey")
    op.drop_table("audit_log")
    op.drop_index("IX_permission_role_key", table_name="contextual_permission")
    op.drop_table("contextual_permission")
    op.drop_table("app_user")
    op.drop_index("IX_role_org_name", table_name="dynamic_role")
    op.drop_table("dynamic_role")
    op.drop_index(
        "IX_relationship_child_type_active", table_name="hierarchy_relationship"
    )
    op.drop_table("hierarchy_relationship")
    op.drop_index("ix_hierarchy_node_materialized_path", table_name="hierarchy_node")
    op.drop_index("IX_node_hierarchy_parent", table_name="hierarchy_node")
    op.drop_table("hierarchy_node")
    op.drop_table("hierarchy_definition")
