"""
Application factory for the OrgTree hierarchy and permission service.

Usage::

    from orgtree import create_app
    app = create_app()           # Uses FLASK_ENV to pick config.
    app = create_app("testing")  # Explicit config for tests.
"""

import logging
import os

from flask import Flask, jsonify

from .config import config_by_name
from .errors import OrgTreeError
from .extensions import csrf, db, login_manager, migrate


def create_app(config_name: str | None = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: One of 'development', 'testing', or 'production'.
                     Defaults to the FLASK_ENV environment variable,
                     falling back to 'development'.

    Returns:
        A fully configured Flask application instance.
    """
    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")
    config_class = config_by_name.get(config_name)
    if config_class is None:
        raise ValueError(
            f"Unknown config '{config_name}'. "
            f"Valid options: {list(config_by_name.keys())}"
        )

    app = Flask(__name__)
    app.config.from_object(config_class)

    if config_name == "production":
        config_class.validate_production_secrets(app.config)

    # -- Initialize extensions ---------------------------------------------
    _register_extensions(app)

    # -- Register blueprints -----------------------------------------------
    _register_blueprints(app)

    # -- Register error handlers -------------------------------------------
    _register_error_handlers(app)

    # -- Register custom CLI commands --------------------------------------
    _register_cli_commands(app)

    # -- Configure logging -------------------------------------------------
    _configure_logging(app)

    return app


def _register_extensions(app: Flask) -> None:
    """Bind all Flask extensions to the application instance."""
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)

    # Imported here to avoid circular imports with models.
    from .models.user import User  # pylint: disable=import-outside-toplevel

    @login_manager.user_loader
    def load_user(user_id: str):
        """Load a user by primary key for Flask-Login session management."""
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        """Reject anonymous API calls with JSON instead of a redirect."""
        return jsonify(error="UNAUTHORIZED", message="Sign in required."), 401


def _register_blueprints(app: Flask) -> None:
    """
    Import and register each blueprint with its URL prefix.

    Blueprints are imported inside this function to avoid circular
    imports.
    """
    # pylint: disable=import-outside-toplevel

    # Main blueprint (health check).
    from .blueprints.main import bp as main_bp

    app.register_blueprint(main_bp)

    # Hierarchy API: nodes, relationships and integrity audits.
    from .blueprints.hierarchy import bp as hierarchy_bp

    app.register_blueprint(hierarchy_bp, url_prefix="/api")

    # Roles API: permission resolution and role lifecycle.
    from .blueprints.roles import bp as roles_bp

    app.register_blueprint(roles_bp, url_prefix="/api/roles")


def _register_error_handlers(app: Flask) -> None:
    """Map domain errors and common HTTP errors to JSON responses."""

    @app.errorhandler(OrgTreeError)
    def domain_error(error: OrgTreeError):
        """Surface the error kind with its HTTP status."""
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(ValueError)
    def bad_request(error: ValueError):
        """Invalid input values supplied by the caller."""
        db.session.rollback()
        return jsonify(error="BAD_REQUEST", message=str(error)), 400

    @app.errorhandler(403)
    def forbidden(error):  # pylint: disable=unused-argument
        """Handle 403 Forbidden errors."""
        return jsonify(error="FORBIDDEN", message="Permission denied."), 403

    @app.errorhandler(404)
    def not_found(error):  # pylint: disable=unused-argument
        """Handle 404 Not Found errors."""
        return jsonify(error="NOT_FOUND", message="Resource not found."), 404

    @app.errorhandler(500)
    def internal_error(error):  # pylint: disable=unused-argument
        """Handle 500 Internal Server Error."""
        db.session.rollback()
        return jsonify(error="INTERNAL_ERROR", message="Internal server error."), 500


def _register_cli_commands(app: Flask) -> None:
    """Register custom Flask CLI commands (e.g., flask hierarchy-audit)."""
    from .cli import register_commands  # pylint: disable=import-outside-toplevel

    register_commands(app)


def _configure_logging(app: Flask) -> None:
    """Set the root log level from the LOG_LEVEL setting."""
    log_level = app.config.get("LOG_LEVEL", "INFO")
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO))

    # Quiet down noisy libraries in development.
    if app.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
