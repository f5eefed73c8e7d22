# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Customer and Staff Accounts

WHY: Orders, points and promo redemptions are tied to an account. Uses
bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS)
- Minimum 8 characters with at least one letter and one digit
- Emails are stored lower-cased and are unique
- Session tokens managed separately (see session_service.py)
"""

import re
from dataclasses import dataclass

import bcrypt
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..models import Order, User
from storefront.time_utils import utcnow
from storefront.validation import ConflictError, ValidationError
from . import location_service, points_service, promo_service
from .location_service import GeocodingError
from .points_service import PointsError
from .promo_service import PromoValidationError


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    pass


_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

PROFILE_FIELDS = {
    "firstName": "first_name",
    "lastName": "last_name",
    "phoneNumber": "phone",
    "marketingConsent": "marketing_consent",
}


@dataclass
class SignupResult:
    user: User
    promo_applied: dict | None = None
    signup_bonus_points: int = 0


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit

    Raises PasswordValidationError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r"[A-Za-z]", password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r"\d", password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    Returns True if password matches hash, False otherwise. A malformed
    stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def create_user(
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    *,
    phone: str | None = None,
    location_data: dict | None = None,
    marketing_consent: bool = False,
    is_admin: bool = False,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises ValidationError for bad input (including weak passwords) and
    ConflictError when the email is already registered.
    """
    email = normalize_email(email)
    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    if not (first_name or "").strip() or not (last_name or "").strip():
        raise ValidationError("First name and last name are required")

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("Email already registered")

    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        phone=(phone or "").strip() or None,
        location_data=location_data,
        marketing_consent=bool(marketing_consent),
        is_admin=is_admin,
        is_active=True,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Email already registered")
    return user


def _signup_location(coordinates: dict | None, address: str | None, ip_address: str | None) -> dict | None:
    geocoder = location_service.get_geocoder()
    if coordinates:
        try:
            location = location_service.resolve_location(coordinates)
        except ValueError as e:
            raise ValidationError(str(e))
        if location:
            return location
    elif address:
        try:
            return geocoder.geocode(address)
        except GeocodingError as e:
            current_app.logger.warning("Address geocoding failed during signup: %s", e)

    location = geocoder.locate_ip(ip_address)
    return location if location_service.is_resolved(location) else None


def signup(data: dict, ip_address: str | None = None) -> SignupResult:
    """
    Register a customer.

    Location comes from coordinates (reverse geocoded) or an address
    (geocoded), falling back to the client IP when neither resolves. The signup bonus is credited when configured. A promo code
    is validated as for a new user; a bad code is reported, not fatal.
    """
    email = data.get("email")
    password = data.get("password")
    first_name = data.get("firstName")
    last_name = data.get("lastName")
    if not email or not password or not first_name or not last_name:
        raise ValidationError("Email, password, first name, and last name are required")

    location = _signup_location(data.get("coordinates"), data.get("address"), ip_address)

    user = create_user(
        email,
        password,
        first_name,
        last_name,
        phone=data.get("phoneNumber"),
        location_data=location,
        marketing_consent=bool(data.get("marketingConsent", False)),
    )

    bonus = 0
    try:
        txn = points_service.award_signup_bonus(user.id)
        bonus = txn.points_amount if txn else 0
    except (PointsError, SQLAlchemyError):
        db.session.rollback()
        current_app.logger.exception("Failed to credit signup bonus for user %s", user.id)

    promo_applied = None
    code = data.get("promoCode")
    if code:
        try:
            validation = promo_service.validate_promo(user.id, code, True, location=location)
            promo_applied = {"valid": True, **validation.promo.public_dict()}
        except PromoValidationError as e:
            promo_applied = {"valid": False, "code": promo_service.normalize_code(code), "error": e.message}

    return SignupResult(user=user, promo_applied=promo_applied, signup_bonus_points=bonus)


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    user = db.session.query(User).filter(
        User.email == normalize_email(email),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password or "", user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def update_profile(user: User, data: dict) -> User:
    """Update whitelisted profile fields; coordinates are reverse geocoded."""
    for key, attr in PROFILE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if attr in ("first_name", "last_name"):
            if not isinstance(value, str) or not value.strip():
                raise ValidationError(f"{key} cannot be empty")
            value = value.strip()
        elif attr == "marketing_consent":
            value = bool(value)
        elif attr == "phone":
            value = (value or "").strip() or None
        setattr(user, attr, value)

    if "coordinates" in data:
        try:
            location = location_service.resolve_location(data["coordinates"])
        except ValueError as e:
            raise ValidationError(str(e))
        # A failed lookup keeps the saved location
        if location is not None or not data["coordinates"]:
            user.location_data = location

    db.session.commit()
    return user


def is_new_user(user: User) -> bool:
    """A user is new until they place their first order."""
    return db.session.query(Order.id).filter(Order.user_id == user.id).first() is None
