"""
Shared column helpers for the model modules.
"""

from datetime import datetime, timezone

from orgtree.extensions import db


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (columns are timezone-unaware)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def created_at_column():
    """``created_at`` set on insert; also the tie-break for ordering."""
    return db.Column(db.DateTime, nullable=False, default=utcnow)


def updated_at_column():
    """``updated_at`` refreshed on every ORM update."""
    return db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
