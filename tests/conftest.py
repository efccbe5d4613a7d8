"""
Pytest configuration and shared fixtures.

Provides a test application, database session, and test clients that
all test modules can use. Uses the ``testing`` configuration, which
points to an in-memory SQLite database unless TEST_DATABASE_URL is set.
"""

import itertools

import pytest
from flask_login import FlaskLoginClient

from orgtree import create_app
from orgtree.extensions import db as _db
from orgtree.models.role import Permission, Role
from orgtree.models.user import User

_user_numbers = itertools.count(1)


@pytest.fixture(scope="session")
def app():
    """
    Create a Flask application configured for testing.

    The app is created once per test session.
    """
    app = create_app("testing")

    # Establish an application context for the entire test session.
    with app.app_context():
        yield app


@pytest.fixture(scope="session")
def database(app):  # pylint: disable=redefined-outer-name
    """Provide the SQLAlchemy database instance."""
    yield _db


@pytest.fixture(scope="function")
def db_session(app, database):  # pylint: disable=redefined-outer-name
    """
    Provide a clean database session for each test function.

    The services commit their own transactions, so each test gets
    freshly created tables that are dropped again afterwards.  A fresh
    app context per test also gives each test its own ``g``, which is
    where Flask-Login caches the signed-in user.
    """
    with app.app_context():
        database.create_all()

        yield database.session

        database.session.remove()
        database.drop_all()


@pytest.fixture(scope="function")
def client(app, db_session):  # pylint: disable=redefined-outer-name,unused-argument
    """
    Provide an anonymous Flask test client for making HTTP requests.

    Usage in tests::

        def test_health(client):
            response = client.get("/health")
            assert response.status_code == 200
    """
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture(scope="function")
def make_user(db_session):  # pylint: disable=redefined-outer-name
    """
    Factory for users whose role grants the given permissions.

    Usage::

        user = make_user(["hierarchy_node:create"], organization_id=1)
    """

    def _make_user(grants=(), organization_id=1):
        number = next(_user_numbers)
        role = Role(
            organization_id=organization_id,
            name=f"Test Role {number}",
            role_type="static",
            priority=100,
        )
        db_session.add(role)
        db_session.flush()

        for grant in grants:
            resource_type, action = grant.split(":")
            db_session.add(
                Permission(
                    organization_id=organization_id,
                    role_id=role.id,
                    resource_type=resource_type,
                    action=action,
                    effect="allow",
                )
            )

        user = User(
            organization_id=organization_id,
            email=f"user{number}@example.com",
            first_name="Test",
            last_name=f"User {number}",
            role_id=role.id,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture(scope="function")
def login_client(app, make_user):  # pylint: disable=redefined-outer-name
    """
    Factory for test clients signed in as a user holding ``grants``.

    Usage::

        client = login_client("hierarchy_node:create")
        client.post("/api/nodes", json={...})
    """
    app.test_client_class = FlaskLoginClient

    def _login_client(*grants, organization_id=1):
        user = make_user(grants, organization_id=organization_id)
        return app.test_client(user=user)

    yield _login_client

    app.test_client_class = None
