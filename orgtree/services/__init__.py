"""
Service layer package.

Each service module encapsulates one area of the hierarchy and
permission engine.  Services are the only layer that writes models;
routes and CLI commands call services and never touch the session
directly.

Import services in route modules as needed::

    from orgtree.services import node_service
"""
