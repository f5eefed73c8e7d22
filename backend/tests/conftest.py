"""
Pytest fixtures for storefront backend tests.

Provides the test app (in-memory SQLite), a per-test table wipe, users with
session tokens, and fakes for the payment gateway, the mail relay and the
geocoder.
"""

import json
from datetime import date

import httpx
import pytest
from storefront import create_app
from storefront.extensions import db
from storefront.services import session_service, time_slot_service
from storefront.services.auth_service import create_user
from storefront.services.location_service import Geocoder
from storefront.services.notification_service import Mailer
from storefront.services.payment_service import PaymentGatewayError, WebhookSignatureError


# A Wednesday, inside the default pickup days
PICKUP_DATE = date(2030, 6, 5)


class FakeGateway:
    """In-memory stand-in for StripeGateway. A webhook signature of "valid" passes."""

    publishable_key = "pk_test_storefront"
    is_configured = True

    def __init__(self):
        self.intents = {}
        self.refunds = []

    def create_intent(self, amount_cents, currency, metadata):
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret",
            "status": "requires_payment_method",
            "amount": amount_cents,
            "currency": currency,
            "metadata": {k: "" if v is None else str(v) for k, v in metadata.items()},
        }
        return dict(self.intents[intent_id])

    def retrieve_intent(self, intent_id):
        if intent_id not in self.intents:
            raise PaymentGatewayError(f"No such payment_intent: '{intent_id}'")
        return dict(self.intents[intent_id])

    def confirm_intent(self, intent_id):
        self.mark(intent_id, "succeeded")
        return self.retrieve_intent(intent_id)

    def create_refund(self, intent_id, amount_cents=None):
        intent = self.retrieve_intent(intent_id)
        refund = {
            "id": f"re_test_{len(self.refunds) + 1}",
            "amount": amount_cents or intent["amount"],
            "status": "succeeded",
        }
        self.refunds.append(refund)
        return refund

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise WebhookSignatureError("Webhook signature verification failed")
        return json.loads(payload)

    def mark(self, intent_id, status):
        self.intents[intent_id]["status"] = status


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'RESTAURANT_NAME': 'Lentil Life',
        'STRIPE_SECRET_KEY': '',
        'MAIL_SERVER': '',
        'OPENCAGE_API_KEY': '',
        'POINTS_PER_DOLLAR': '1.00',
        'MIN_ORDER_FOR_POINTS_CENTS': 0,
        'SIGNUP_BONUS_POINTS': 0,
        'POINTS_EXPIRY_MONTHS': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function', autouse=True)
def gateway(app):
    """Fresh fake payment gateway per test."""
    fake = FakeGateway()
    app.extensions["storefront.payments"] = fake
    return fake


@pytest.fixture(scope='function', autouse=True)
def geocoder(app):
    """Keyless geocoder whose HTTP lookups (IP geolocation) all get a 503."""
    offline = httpx.MockTransport(lambda request: httpx.Response(503))
    geo = Geocoder(api_key="", client=httpx.Client(transport=offline))
    app.extensions["storefront.geocoder"] = geo
    return geo


@pytest.fixture(scope='function', autouse=True)
def outbox(app):
    """Messages handed to the mailer during the test."""
    sent = []
    app.extensions["storefront.mailer"] = Mailer(sender="Lentil Life <orders@test.local>", transport=sent.append)
    return sent


@pytest.fixture(scope='function')
def customer(db_session):
    return create_user("ada@example.com", "Password123", "Ada", "Lovelace", phone="555-0100")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return create_user("grace@example.com", "Password123", "Grace", "Hopper", phone="555-0101")


@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("admin@example.com", "Password123", "Store", "Admin", is_admin=True)


def auth_headers(user) -> dict:
    """Open a session for user and return Authorization headers."""
    _session, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def customer_headers(customer):
    return auth_headers(customer)


@pytest.fixture(scope='function')
def other_headers(other_customer):
    return auth_headers(other_customer)


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture(scope='function')
def slots(db_session):
    """Default pickup schedule and slots (11:00, 12:00, 17:00, 18:00; 10 orders each)."""
    time_slot_service.get_config()
    time_slot_service.ensure_default_slots()
    return time_slot_service.list_slots()


def order_payload(**overrides) -> dict:
    """A valid storefront order body: 2 x $11.70 = $23.40."""
    payload = {
        "customer": {"name": "Ada Lovelace", "email": "ada@example.com", "phone": "555-0100"},
        "items": [{"name": "Lentil Bowl", "price": 11.70, "quantity": 2}],
        "pickup": {"date": PICKUP_DATE.isoformat(), "time": "12:00"},
        "total": 23.40,
        "paymentMethod": "cash",
    }
    payload.update(overrides)
    return payload
