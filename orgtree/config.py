"""
Application configuration classes.

Each class represents a deployment environment. The factory function
``create_app`` in ``orgtree/__init__.py`` selects the appropriate config
based on the FLASK_ENV environment variable.

Connection strings come from ``DATABASE_URL`` so any SQLAlchemy
dialect with transaction support can back the hierarchy tables.
Testing defaults to an in-memory SQLite database.
"""

import logging
import os

# Module-level logger for startup warnings emitted by config classes.
_logger = logging.getLogger(__name__)

# Sentinel for detecting an unset SECRET_KEY in production.
_DEFAULT_SECRET_KEY = "dev-secret-change-me"


def _int_env(name: str, default: int) -> int:
    """Read an integer environment variable with a fallback."""
    return int(os.environ.get(name, str(default)))


class BaseConfig:
    """
    Shared configuration values inherited by all environments.

    Secrets and connection strings are loaded from environment variables
    so they never appear in source control.
    """

    # -- Flask core --------------------------------------------------------
    SECRET_KEY: str = os.environ.get("SECRET_KEY", _DEFAULT_SECRET_KEY)

    # -- Session cookie hardening ------------------------------------------
    SESSION_COOKIE_HTTPONLY: bool = True
    SESSION_COOKIE_SAMESITE: str = "Lax"
    SESSION_COOKIE_SECURE: bool = False

    # Expire idle sessions after 1 hour instead of Flask's 31-day default.
    PERMANENT_SESSION_LIFETIME: int = _int_env("PERMANENT_SESSION_LIFETIME", 3600)

    # -- SQLAlchemy --------------------------------------------------------
    SQLALCHEMY_DATABASE_URI: str = os.environ.get(
        "DATABASE_URL", "sqlite:///orgtree_dev.db"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    SQLALCHEMY_ECHO: bool = False

    # -- Hierarchy engine --------------------------------------------------
    # Default max_depth for newly created hierarchies (1-50).
    HIERARCHY_DEFAULT_MAX_DEPTH: int = _int_env("HIERARCHY_DEFAULT_MAX_DEPTH", 10)

    # -- Logging -----------------------------------------------------------
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    @classmethod
    def validate_production_secrets(cls, app_config: dict) -> None:
        """
        Verify that required settings are safe for production.

        Raises ``RuntimeError`` for hard requirements and logs warnings
        for soft requirements.

        Args:
            app_config: The ``app.config`` dict after loading the
                        config class.

        Raises:
            RuntimeError: If any critical value is missing or still
                          set to its insecure default.
        """
        errors: list[str] = []

        if app_config.get("SECRET_KEY") == _DEFAULT_SECRET_KEY:
            errors.append(
                "SECRET_KEY is still the insecure default. "
                "Generate one with: python -c "
                '"import secrets; print(secrets.token_hex(32))"'
            )

        if not os.environ.get("DATABASE_URL"):
            errors.append("DATABASE_URL must be set explicitly in production.")

        max_depth = app_config.get("HIERARCHY_DEFAULT_MAX_DEPTH", 10)
        if not 1 <= max_depth <= 50:
            errors.append(
                f"HIERARCHY_DEFAULT_MAX_DEPTH ({max_depth}) must be between 1 and 50."
            )

        if errors:
            combined = "\n  - ".join(errors)
            raise RuntimeError(f"Production configuration errors:\n  - {combined}")

        if app_config.get("LOG_LEVEL", "").upper() == "DEBUG":
            _logger.warning(
                "LOG_LEVEL=DEBUG is not recommended in production; "
                "SQL statements and request data may appear in logs."
            )


class DevelopmentConfig(BaseConfig):
    """Development environment: verbose logging, SQL echo enabled."""

    DEBUG: bool = True
    SQLALCHEMY_ECHO: bool = True
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "DEBUG")


class TestingConfig(BaseConfig):
    """
    Testing environment: in-memory SQLite unless TEST_DATABASE_URL is set.

    WTF_CSRF_ENABLED is disabled so JSON posts in tests don't need
    CSRF tokens.
    """

    TESTING: bool = True
    WTF_CSRF_ENABLED: bool = False

    SQLALCHEMY_DATABASE_URI: str = os.environ.get("TEST_DATABASE_URL", "sqlite://")
    LOG_LEVEL: str = "DEBUG"


class ProductionConfig(BaseConfig):
    """
    Production environment: strict settings, no debug output.

    The application factory calls ``validate_production_secrets()`` at
    startup and refuses to launch if critical values are missing.
    """

    DEBUG: bool = False
    SQLALCHEMY_ECHO: bool = False
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "WARNING")

    # Session cookie is only sent over HTTPS.
    SESSION_COOKIE_SECURE: bool = True


# Lookup dict used by the application factory.
config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}
