# backend/checkrto/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Must land before extensions bind: the engine is built from these values
        app.config.update(config_overrides)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.stickers import stickers_bp
    from .routes.applications import applications_bp
    from .routes.inspections import inspections_bp
    from .routes.steps import steps_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(stickers_bp)
    app.register_blueprint(applications_bp)
    app.register_blueprint(inspections_bp)
    app.register_blueprint(steps_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
