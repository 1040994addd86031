import time
import uuid
from decimal import Decimal

import jwt
import pytest

from flowaid import create_app
from flowaid.config import TestingConfig
from flowaid.extensions import db
from flowaid.models import Product, School, User
from flowaid.services import init_services

CHECKOUT_URL = "https://pay.gateway.test/checkout/abc123"
GATEWAY_REFERENCE = "bnb_ref_123"


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else str(body)

    @property
    def ok(self):
        return 200 <= self.status_code < 400

    def json(self):
        if self._body is None:
            raise ValueError("no json body")
        return self._body


class FakeSession:
    """Stands in for requests.Session: records posts, replays queued responses."""

    def __init__(self, default=None):
        self.default = default or FakeResponse(200, {})
        self.queue = []
        self.calls = []
        self.raise_exc = None

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers or {}, "timeout": timeout})
        if self.raise_exc is not None:
            raise self.raise_exc
        if self.queue:
            return self.queue.pop(0)
        return self.default


def gateway_ok_response(reference=GATEWAY_REFERENCE, url=CHECKOUT_URL):
    return FakeResponse(200, {"status": True, "message": "created", "data": {"reference": reference, "paymentUrl": url}})


@pytest.fixture
def gateway():
    return FakeSession(default=gateway_ok_response())


@pytest.fixture
def mailer():
    return FakeSession(default=FakeResponse(200, {"id": "email_1"}))


@pytest.fixture
def app(gateway, mailer):
    app = create_app(TestingConfig)
    init_services(app, gateway_session=gateway, email_session=mailer)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def owner(app):
    user = User(id=str(uuid.uuid4()), email="owner@schools.org", full_name="School Owner")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def school(app, owner):
    s = School(name="Kibera Girls Secondary", location="Nairobi", status="approved", owner_id=owner.id, total_received=Decimal("0"))
    db.session.add(s)
    db.session.commit()
    return s


@pytest.fixture
def product(app, school):
    p = Product(name="Reusable Pad Kit", price=Decimal("12.50"), stock=100, category="hygiene", school_id=school.id)
    db.session.add(p)
    db.session.commit()
    return p


def make_token(sub, email=None, *, full_name=None, role=None, exp_in=3600, secret=None, audience="authenticated"):
    claims = {
        "sub": sub,
        "email": email,
        "aud": audience,
        "exp": int(time.time()) + exp_in,
        "app_metadata": {"role": role} if role else {},
        "user_metadata": {"full_name": full_name} if full_name else {},
    }
    return jwt.encode(claims, secret or TestingConfig.AUTH_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def auth_header():
    def _header(sub=None, email="donor@mail.com", **kwargs):
        token = make_token(sub or str(uuid.uuid4()), email, **kwargs)
        return {"Authorization": f"Bearer {token}"}

    return _header


@pytest.fixture
def anonymous_payload(product):
    return {
        "productId": product.id,
        "amount": 25.00,
        "quantity": 2,
        "isAnonymous": True,
        "anonymousEmail": "a@b.com",
        "anonymousName": "Well Wisher",
    }


@pytest.fixture
def respond():
    """Build a fake HTTP response: respond(401, {"message": "..."})."""
    return FakeResponse
