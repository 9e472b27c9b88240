# backend/voucherpay/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .permissions import verify_role_table


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Refuse to start with a role missing from the permission table
    verify_role_table()

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.tenants import tenants_bp
    from .routes.staff import staff_bp
    from .routes.players import players_bp
    from .routes.pool import pool_bp
    from .routes.vouchers import vouchers_bp
    from .routes.wallets import wallets_bp
    from .routes.ledger import ledger_bp
    from .routes.audit import audit_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(tenants_bp)
    app.register_blueprint(staff_bp)
    app.register_blueprint(players_bp)
    app.register_blueprint(pool_bp)
    app.register_blueprint(vouchers_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(audit_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config.get("CORS_ALLOWED_ORIGINS", ()):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
