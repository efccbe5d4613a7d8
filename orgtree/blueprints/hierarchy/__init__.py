"""
Hierarchy blueprint: JSON API for hierarchies, nodes and relationships.
"""

from flask import Blueprint

bp = Blueprint("hierarchy", __name__)

# Import routes after blueprint creation to avoid circular imports.
from orgtree.blueprints.hierarchy import routes  # noqa: E402, F401
