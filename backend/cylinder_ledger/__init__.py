# backend/cylinder_ledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate
from .logging_config import configure_logging



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Engine options are read by init_app, so overrides must land first
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config["LOG_LEVEL"], app.config["LOG_FORMAT"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import cylinder_inventory_bp
    from .routes.gr import gr_bp
    from .routes.exchange import cylinder_exchange_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cylinder_inventory_bp)
    app.register_blueprint(gr_bp)
    app.register_blueprint(cylinder_exchange_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
