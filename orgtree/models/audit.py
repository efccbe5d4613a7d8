"""
Audit logging model.

``AuditLog`` records every mutation made through the hierarchy and role
services.  Change details are stored as JSON text.

``action_type`` values: CREATE, UPDATE, MOVE, DEACTIVATE, ACTIVATE, CLONE.

JSON conventions for ``previous_value`` / ``new_value``:
  - CREATE: previous_value is NULL, new_value has the new record.
  - UPDATE/MOVE: both contain only the changed fields.
  - DEACTIVATE: previous_value has the active state, new_value the inactive.
"""

from orgtree.extensions import db
from orgtree.models.columns import created_at_column


class AuditLog(db.Model):
    """Records all data changes made through the services."""

    __tablename__ = "audit_log"

    # BigInteger on server databases; SQLite needs INTEGER for autoincrement.
    id = db.Column(
        db.BigInteger().with_variant(db.Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    user_id = db.Column(db.Integer, db.ForeignKey("app_user.id"), nullable=True)
    action_type = db.Column(db.String(50), nullable=False)
    entity_type = db.Column(db.String(100), nullable=False)
    entity_id = db.Column(db.Integer, nullable=True)
    previous_value = db.Column(db.Text, nullable=True)
    new_value = db.Column(db.Text, nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)
    created_at = created_at_column()

    # -- Relationships -----------------------------------------------------
    user = db.relationship("User")

    def __repr__(self) -> str:
        return (
            f"<AuditLog {self.action_type} {self.entity_type}"
            f":{self.entity_id}>"
        )
