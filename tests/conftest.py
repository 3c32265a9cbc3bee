import itertools
import json
import os
from decimal import Decimal

# Settings are read once at import time, so configure the environment first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_key_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "test_webhook_secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["TELEGRAM_NOTIFICATION_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.dependencies import get_current_user, get_notifier, get_payment_gateway
from app.core.exceptions import GatewayCustomerExists, PaymentGatewayError
from app.models import Course, CourseEmiPlan, User
from app.models.enums import UserRole
from app.utils.notifier import Notifier
from app.utils.payment_gateway import PaymentGateway
from app.utils.signature import compute_signature
from main import app

KEY_SECRET = os.environ["RAZORPAY_KEY_SECRET"]
WEBHOOK_SECRET = os.environ["RAZORPAY_WEBHOOK_SECRET"]


class FakeGateway(PaymentGateway):
    """In-memory gateway. Add a method name to `fail_on` to make it raise."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.orders = []
        self.plans = {}
        self.subscriptions = {}
        self.customers = {}
        self.existing_customers = {}
        self.cancelled = []
        self.created_customers = []
        self.fail_on = set()
        self.subscription_status = "created"
        self.subscription_current_end = None

    def _next(self, prefix):
        return f"{prefix}_{next(self._ids)}"

    def _check(self, name):
        if name in self.fail_on:
            raise PaymentGatewayError(f"{name} failed")

    def create_order(self, amount_minor, currency, receipt):
        self._check("create_order")
        order = {
            "id": self._next("order"),
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
        }
        self.orders.append(order)
        return order

    def create_plan(self, period, interval, item_name, amount_minor, currency):
        self._check("create_plan")
        plan_id = self._next("plan")
        self.plans[plan_id] = {
            "period": period,
            "interval": interval,
            "item_name": item_name,
            "amount": amount_minor,
            "currency": currency,
        }
        return {"id": plan_id}

    def fetch_plan(self, plan_id):
        self._check("fetch_plan")
        plan = self.plans.get(plan_id)
        if plan is None:
            return None
        return {"id": plan_id, "amount": plan["amount"]}

    def create_recurring_subscription(self, plan_id, total_count, notes=None):
        self._check("create_recurring_subscription")
        sub_id = self._next("sub")
        self.subscriptions[sub_id] = {
            "plan_id": plan_id,
            "total_count": total_count,
            "notes": notes or {},
        }
        return {
            "id": sub_id,
            "status": self.subscription_status,
            "current_end": self.subscription_current_end,
        }

    def cancel_recurring_subscription(self, subscription_id):
        self._check("cancel_recurring_subscription")
        self.cancelled.append(subscription_id)

    def create_customer(self, name, email):
        self._check("create_customer")
        if email in self.existing_customers:
            raise GatewayCustomerExists(f"Customer already exists for {email}")
        customer_id = self._next("cust")
        self.customers[email] = customer_id
        self.created_customers.append((name, email))
        return {"id": customer_id}

    def find_customer_by_email(self, email):
        customer_id = self.existing_customers.get(email) or self.customers.get(email)
        return {"id": customer_id} if customer_id else None


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, to_address, subject, body_lines, course_title, expires_at=None):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.sent.append(
            {
                "to": to_address,
                "subject": subject,
                "body_lines": body_lines,
                "course_title": course_title,
                "expires_at": expires_at,
            }
        )

    @property
    def subjects(self):
        return [n["subject"] for n in self.sent]


# -----------------------
# Database
# -----------------------
@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def _make_user(db, email, role=UserRole.STUDENT, **kwargs):
    user = User(
        email=email,
        full_name=kwargs.pop("full_name", email.split("@")[0].title()),
        role=role.value,
        is_active=True,
        **kwargs,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def student(db_session):
    return _make_user(db_session, "student@example.com")


@pytest.fixture()
def other_student(db_session):
    return _make_user(db_session, "other@example.com")


@pytest.fixture()
def admin(db_session):
    return _make_user(db_session, "admin@example.com", role=UserRole.ADMIN)


@pytest.fixture()
def paid_course(db_session):
    course = Course(
        name="Vedic Mathematics",
        price=Decimal("1200.00"),
        duration_in_days=365,
        allow_full_payment=True,
        allow_emi=True,
    )
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture()
def free_course(db_session):
    course = Course(name="Intro to Sanskrit", price=Decimal("0.00"), duration_in_days=90)
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture()
def lifetime_course(db_session):
    course = Course(name="Complete Archive", price=Decimal("4999.00"), duration_in_days=9999)
    db_session.add(course)
    db_session.commit()
    db_session.refresh(course)
    return course


@pytest.fixture()
def emi_template(db_session, paid_course):
    plan = CourseEmiPlan(
        course_id=paid_course.id,
        name="3 months EMI",
        installments=3,
        interest_percent=Decimal("0"),
        per_installment_amount=Decimal("400.00"),
        total_amount=Decimal("1200.00"),
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


# -----------------------
# Collaborators
# -----------------------
@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


# -----------------------
# HTTP client
# -----------------------
@pytest.fixture()
def client(db_session, gateway, notifier, student):
    def _get_db_override():
        yield db_session

    app.dependency_overrides[get_db] = _get_db_override
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_current_user] = lambda: student

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def act_as(client):
    """Switch the authenticated user for subsequent requests."""

    def _act_as(user):
        app.dependency_overrides[get_current_user] = lambda: user

    return _act_as


# -----------------------
# Gateway payloads
# -----------------------
def checkout_signature(order_id, payment_id, secret=KEY_SECRET):
    return compute_signature(f"{order_id}|{payment_id}", secret)


def charged_event(subscription_id, payment_id, amount=20000, charge_at=None, current_end=None):
    return {
        "event": "subscription.charged",
        "payload": {
            "subscription": {
                "entity": {
                    "id": subscription_id,
                    "status": "active",
                    "charge_at": charge_at,
                    "current_end": current_end,
                }
            },
            "payment": {
                "entity": {
                    "id": payment_id,
                    "amount": amount,
                    "currency": "INR",
                    "status": "captured",
                    "order_id": f"order_for_{payment_id}",
                    "created_at": 1767225600,
                }
            },
        },
    }


def subscription_event(event, subscription_id):
    return {
        "event": event,
        "payload": {"subscription": {"entity": {"id": subscription_id, "status": "halted"}}},
    }


@pytest.fixture()
def send_webhook(client):
    def _send(event, secret=WEBHOOK_SECRET, signature=None, raw=None):
        body = raw if raw is not None else json.dumps(event).encode("utf-8")
        sig = signature if signature is not None else compute_signature(body, secret)
        return client.post(
            "/payment/webhook",
            content=body,
            headers={"X-Razorpay-Signature": sig, "Content-Type": "application/json"},
        )

    return _send
