# backend/storefront/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .validation import format_cents



def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # External service clients, one per app (tests replace these entries)
    from .services.payment_service import StripeGateway
    from .services.notification_service import Mailer
    from .services.location_service import Geocoder

    app.extensions["storefront.payments"] = StripeGateway.from_config(app.config)
    app.extensions["storefront.mailer"] = Mailer.from_config(app.config)
    app.extensions["storefront.geocoder"] = Geocoder.from_config(app.config)

    # Email templates render money as "$12.34"
    app.jinja_env.filters["money"] = format_cents

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.menu import menu_bp
    from .routes.orders import orders_bp
    from .routes.points import points_bp
    from .routes.promos import promos_bp
    from .routes.time_slots import time_slots_bp
    from .routes.payments import payments_bp
    from .routes.location import location_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(menu_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(points_bp)
    app.register_blueprint(promos_bp)
    app.register_blueprint(time_slots_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(location_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ORIGINS") or [])
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, Stripe-Signature"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
