# backend/storefront/config.py
from __future__ import annotations
import os


def _optional_int(value: str | None) -> int | None:
    if value is None or not value.strip():
        return None
    return int(value)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storefront.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storefront.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))

    RESTAURANT_NAME = os.environ.get("RESTAURANT_NAME", "Lentil Life")
    PICKUP_LOCATION = os.environ.get("PICKUP_LOCATION", "Lentil Life Kitchen")
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3000")
    CORS_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
        ).split(",")
        if origin.strip()
    ]

    # Stripe (empty secret key disables intent creation)
    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
    STRIPE_PUBLISHABLE_KEY = os.environ.get("STRIPE_PUBLISHABLE_KEY", "")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "usd")

    # SMTP relay (empty server disables outgoing mail)
    MAIL_SERVER = os.environ.get("MAIL_SERVER", "")
    MAIL_PORT = int(os.environ.get("MAIL_PORT", "587"))
    MAIL_USERNAME = os.environ.get("MAIL_USERNAME", "")
    MAIL_PASSWORD = os.environ.get("MAIL_PASSWORD", "")
    MAIL_USE_TLS = os.environ.get("MAIL_USE_TLS", "true").lower() == "true"
    MAIL_FROM = os.environ.get("MAIL_FROM", "Lentil Life <orders@lentillife.local>")
    MAIL_TIMEOUT_SECONDS = float(os.environ.get("MAIL_TIMEOUT_SECONDS", "10"))

    # OpenCage reverse geocoding (empty key uses the fallback city table)
    OPENCAGE_API_KEY = os.environ.get("OPENCAGE_API_KEY", "")
    GEOCODER_TIMEOUT_SECONDS = float(os.environ.get("GEOCODER_TIMEOUT_SECONDS", "10"))

    # Loyalty defaults, used until an admin saves a points config row
    POINTS_PER_DOLLAR = os.environ.get("POINTS_PER_DOLLAR", "1.00")
    MIN_ORDER_FOR_POINTS_CENTS = int(os.environ.get("MIN_ORDER_FOR_POINTS_CENTS", "0"))
    SIGNUP_BONUS_POINTS = int(os.environ.get("SIGNUP_BONUS_POINTS", "0"))
    POINTS_EXPIRY_MONTHS = _optional_int(os.environ.get("POINTS_EXPIRY_MONTHS"))
