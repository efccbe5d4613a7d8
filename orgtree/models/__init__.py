"""
Model package. Imports all models so Alembic and SQLAlchemy can
discover them automatically when ``flask db`` commands are run.

  - hierarchy.py -> hierarchy definitions, nodes, relationships
  - role.py      -> dynamic roles and contextual permissions
  - user.py      -> session principals
  - audit.py     -> audit log
"""

from orgtree.models.hierarchy import (  # noqa: F401
    HierarchyDefinition,
    HierarchyNode,
    HierarchyRelationship,
)
from orgtree.models.role import Permission, Role  # noqa: F401
from orgtree.models.user import User  # noqa: F401
from orgtree.models.audit import AuditLog  # noqa: F401
