# backend/printdesk/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def _configure_logging(app: Flask) -> None:
    level = str(app.config.get("LOG_LEVEL", "INFO")).upper()
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("printdesk").setLevel(level)
    app.logger.setLevel(level)


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.invoices import invoices_bp
    from .routes.payments import payments_bp
    from .routes.print_jobs import print_jobs_bp
    from .routes.weight_tiers import weight_tiers_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(print_jobs_bp)
    app.register_blueprint(weight_tiers_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
