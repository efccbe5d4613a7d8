"""
Waitress WSGI entry point for the OrgTree JSON API.

Usage::

    FLASK_ENV=production DATABASE_URL=... SECRET_KEY=... python wsgi.py

Binds to WAITRESS_HOST:WAITRESS_PORT (default 127.0.0.1:8080) with
WAITRESS_THREADS worker threads.  Put a TLS-terminating proxy in front
of it; session cookies are marked Secure in production.
"""

import os

from waitress import serve

from orgtree import create_app

app = create_app(os.environ.get("FLASK_ENV", "production"))

if __name__ == "__main__":
    host = os.environ.get("WAITRESS_HOST", "127.0.0.1")
    port = int(os.environ.get("WAITRESS_PORT", "8080"))
    threads = int(os.environ.get("WAITRESS_THREADS", "8"))
    app.logger.info("Starting Waitress on %s:%d with %d threads", host, port, threads)
    serve(app, host=host, port=port, threads=threads)
