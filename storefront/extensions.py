"""Module-level extension objects shared by blueprints and services.

They hold no app until create_app() calls init_app() on each one, so
importing them never needs an application.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # only the routes that declare a limit are limited
    storage_uri="memory://",
)
