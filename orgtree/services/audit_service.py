"""
Audit service: records every hierarchy and role mutation.

Each CREATE, UPDATE, MOVE, DEACTIVATE, ACTIVATE and CLONE performed by
the services passes through ``log_change`` inside the same transaction
as the change itself, so a rolled-back operation leaves no audit row.
"""

import json
import logging
from typing import Any

from flask import has_request_context, request

from orgtree.extensions import db
from orgtree.models.audit import AuditLog

logger = logging.getLogger(__name__)


# -- Write audit entries ---------------------------------------------------


def log_change(
    user_id: int | None,
    action_type: str,
    entity_type: str,
    entity_id: int | None,
    previous_value: dict[str, Any] | None = None,
    new_value: dict[str, Any] | None = None,
) -> AuditLog:
    """
    Record a data change in the audit log (flushed, not committed).

    Args:
        user_id:        ID of the user who made the change, or None for
                        system actions (e.g., CLI repairs).
        action_type:    One of CREATE, UPDATE, MOVE, DEACTIVATE,
                        ACTIVATE, CLONE.
        entity_type:    Table-qualified entity name (e.g., 'hierarchy_node').
        entity_id:      Primary key of the affected record.
        previous_value: Dict of the record state before the change.
        new_value:      Dict of the record state after the change.

    Returns:
        The newly created AuditLog record.
    """
    ip_address = None
    user_agent = None
    if has_request_context():
        ip_address = request.remote_addr
        user_agent = str(request.user_agent)[:500]

    entry = AuditLog(
        user_id=user_id,
        action_type=action_type,
        entity_type=entity_type,
        entity_id=entity_id,
        previous_value=(
            json.dumps(previous_value, default=str) if previous_value else None
        ),
        new_value=json.dumps(new_value, default=str) if new_value else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.session.add(entry)
    db.session.flush()

    logger.info(
        "Audit: %s %s:%s by user %s",
        action_type,
        entity_type,
        entity_id,
        user_id,
    )
    return entry


# -- Query audit logs ------------------------------------------------------


def get_entity_history(entity_type: str, entity_id: int) -> list[AuditLog]:
    """Return audit entries for one record, oldest first."""
    return (
        AuditLog.query.filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditLog.created_at, AuditLog.id)
        .all()
    )
