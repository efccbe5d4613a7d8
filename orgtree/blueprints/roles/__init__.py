"""
Roles blueprint: JSON API for role lifecycle and permission resolution.
"""

from flask import Blueprint

bp = Blueprint("roles", __name__)

# Import routes after blueprint creation to avoid circular imports.
from orgtree.blueprints.roles import routes  # noqa: E402, F401
