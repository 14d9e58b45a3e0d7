# backend/cylinder_ledger/__init__.py
from __future__ import annotations

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.consistency_worker import ConsistencyWorker
    ConsistencyWorker(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.settlements import settlements_bp
    from .routes.receivables import receivables_bp
    from .routes.onboarding import onboarding_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(settlements_bp)
    app.register_blueprint(receivables_bp)
    app.register_blueprint(onboarding_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
