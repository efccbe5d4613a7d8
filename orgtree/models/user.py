"""
Session principal model.

Credentials and login flows belong to the surrounding application.
This model only carries what authorization needs: the principal's
dynamic role, resolved through ``permission_service``.
"""

from flask_login import UserMixin

from orgtree.extensions import db
from orgtree.models.columns import created_at_column, updated_at_column


class User(UserMixin, db.Model):
    """
    Application user loaded by Flask-Login from the session.

    Inherits from ``UserMixin`` to satisfy Flask-Login requirements
    (``is_authenticated``, ``is_active``, ``get_id``).
    """

    __tablename__ = "app_user"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    email = db.Column(db.String(200), unique=True, nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    role_id = db.Column(db.Integer, db.ForeignKey("dynamic_role.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    # -- Relationships -----------------------------------------------------
    role = db.relationship("Role", back_populates="users")

    @property
    def full_name(self) -> str:
        """Return the user's full display name."""
        return f"{self.first_name} {self.last_name}"

    def has_permission(self, action: str, resource_type: str) -> bool:
        """Check the user's role with deny-override resolution."""
        if self.role_id is None:
            return False
        # Imported here to avoid a models -> services import cycle.
        from orgtree.services import (  # pylint: disable=import-outside-toplevel
            permission_service,
        )

        return permission_service.has_permission(self.role_id, action, resource_type)

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role_id}>"
