"""
Authorization decorators for route-level access control.

Used together with Flask-Login's ``@login_required``::

    @bp.route('/nodes', methods=['POST'])
    @login_required
    @permission_required('hierarchy_node', 'create')
    def create_node():
        ...

The check resolves the current user's dynamic role through
``permission_service.has_permission`` (deny-override, default deny).
"""

import logging
from functools import wraps

from flask import abort, request
from flask_login import current_user

logger = logging.getLogger(__name__)


def permission_required(resource_type: str, action: str):
    """
    Decorator that restricts access to users whose role may perform
    ``action`` on ``resource_type``.

    Args:
        resource_type: Resource name (e.g., 'hierarchy_node').
        action:        Action name (e.g., 'create', 'move').
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            if not current_user.is_authenticated:
                abort(401)
            if not current_user.has_permission(action, resource_type):
                logger.warning(
                    "Access denied: user %d (%s) lacks %s:%s for %s %s",
                    current_user.id,
                    current_user.email,
                    resource_type,
                    action,
                    request.method,
                    request.path,
                )
                abort(403)
            return func(*args, **kwargs)

        return wrapper

    return decorator
