"""
Flask extension instances.

Extensions are created here without binding to an application so that
the application factory can call ``init_app()`` on each one during
``create_app()``.  Models and services import ``db`` from this module.
"""

from flask_login import LoginManager
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

# -- Database ORM ----------------------------------------------------------
db = SQLAlchemy()

# -- Schema migrations (Alembic via Flask-Migrate) -------------------------
migrate = Migrate()

# -- Session-based authentication ------------------------------------------
# Sessions are established by the surrounding application; this package
# only loads the principal and checks its role.
login_manager = LoginManager()

# -- CSRF protection for cookie-authenticated writes -----------------------
csrf = CSRFProtect()
