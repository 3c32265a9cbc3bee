from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.models import Course, CourseEntitlement, Payment, Subscription
from app.services.entitlement import LIFETIME_SENTINEL
from app.utils.dt import as_utc_aware
from tests.conftest import checkout_signature


def _initiate(client, course):
    r = client.post("/payment/initiate", json={"mode": "one-time", "course_id": course.id})
    assert r.status_code == 200, r.text
    return r.json()


def _verify_payload(order_id, payment_id, course, signature=None):
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": signature or checkout_signature(order_id, payment_id),
        "course_id": course.id,
    }


def test_initiate_creates_order_in_minor_units(client, db_session, student, paid_course, gateway):
    body = _initiate(client, paid_course)

    assert body["amount"] == 120000
    assert body["currency"] == "INR"
    assert body["course_title"] == paid_course.name
    assert body["key_id"] == "rzp_test_key"

    order = gateway.orders[0]
    assert order["amount"] == 120000
    assert order["receipt"].startswith(f"rcpt_{student.id}_{paid_course.id}_")

    sub = db_session.query(Subscription).one()
    assert sub.type == "one-time"
    assert sub.status == "pending"
    assert sub.gateway_order_id == body["order_id"]
    # No access until the payment is verified
    assert db_session.query(CourseEntitlement).count() == 0


def test_full_one_time_flow(client, db_session, student, paid_course, notifier):
    order = _initiate(client, paid_course)

    before = datetime.now(timezone.utc)
    r = client.post("/payment/verify", json=_verify_payload(order["order_id"], "pay_001", paid_course))
    after = datetime.now(timezone.utc)

    assert r.status_code == 200, r.text
    assert r.json()["lifetime_access"] is False

    entitlement = db_session.query(CourseEntitlement).one()
    expires_at = as_utc_aware(entitlement.expires_at)
    assert before + timedelta(days=365) <= expires_at <= after + timedelta(days=365)

    sub = db_session.query(Subscription).one()
    assert sub.status == "active"
    assert as_utc_aware(sub.expires_at) == expires_at
    assert [entry["payment_id"] for entry in sub.payment_history] == ["pay_001"]

    payments = db_session.query(Payment).all()
    assert len(payments) == 1
    assert payments[0].gateway_payment_id == "pay_001"
    assert payments[0].subscription_id == sub.id

    assert notifier.subjects == ["Enrollment Confirmed"]


def test_tampered_verification_grants_nothing(client, db_session, paid_course):
    order = _initiate(client, paid_course)
    good_signature = checkout_signature(order["order_id"], "pay_001")

    # Signature for a different payment id
    r = client.post(
        "/payment/verify",
        json=_verify_payload(order["order_id"], "pay_999", paid_course, signature=good_signature),
    )
    assert r.status_code == 400, r.text
    assert r.json()["type"] == "invalid_signature"

    r = client.post(
        "/payment/verify",
        json=_verify_payload(order["order_id"], "pay_001", paid_course, signature="0" * 64),
    )
    assert r.status_code == 400, r.text

    assert db_session.query(CourseEntitlement).count() == 0
    assert db_session.query(Payment).count() == 0
    assert db_session.query(Subscription).one().status == "pending"


def test_repeated_verification_is_idempotent(client, db_session, paid_course):
    order = _initiate(client, paid_course)
    payload = _verify_payload(order["order_id"], "pay_001", paid_course)

    r = client.post("/payment/verify", json=payload)
    assert r.status_code == 200, r.text
    first_expiry = as_utc_aware(db_session.query(CourseEntitlement).one().expires_at)

    r = client.post("/payment/verify", json=payload)
    assert r.status_code == 200, r.text
    assert r.json()["already_processed"] is True

    db_session.expire_all()
    assert as_utc_aware(db_session.query(CourseEntitlement).one().expires_at) == first_expiry
    assert db_session.query(Payment).count() == 1
    assert len(db_session.query(Subscription).one().payment_history) == 1


def test_replayed_payment_from_another_user_is_rejected(
    client, act_as, db_session, other_student, paid_course
):
    order = _initiate(client, paid_course)
    payload = _verify_payload(order["order_id"], "pay_001", paid_course)
    assert client.post("/payment/verify", json=payload).status_code == 200

    act_as(other_student)
    r = client.post("/payment/verify", json=payload)

    assert r.status_code == 400, r.text
    assert (
        db_session.query(CourseEntitlement).filter_by(user_id=other_student.id).count() == 0
    )


def test_long_duration_course_gets_lifetime_sentinel(client, db_session, lifetime_course):
    order = _initiate(client, lifetime_course)

    r = client.post(
        "/payment/verify", json=_verify_payload(order["order_id"], "pay_001", lifetime_course)
    )

    assert r.status_code == 200, r.text
    assert r.json()["lifetime_access"] is True
    entitlement = db_session.query(CourseEntitlement).one()
    assert as_utc_aware(entitlement.expires_at) == LIFETIME_SENTINEL
    assert db_session.query(Subscription).one().lifetime_access is True


def test_verify_without_pending_order_creates_subscription(client, db_session, paid_course):
    r = client.post("/payment/verify", json=_verify_payload("order_external", "pay_777", paid_course))

    assert r.status_code == 200, r.text
    sub = db_session.query(Subscription).one()
    assert sub.gateway_order_id == "order_external"
    assert sub.status == "active"


def test_initiate_rejects_active_access(client, paid_course):
    order = _initiate(client, paid_course)
    client.post("/payment/verify", json=_verify_payload(order["order_id"], "pay_001", paid_course))

    r = client.post("/payment/initiate", json={"mode": "one-time", "course_id": paid_course.id})

    assert r.status_code == 409, r.text
    assert r.json()["type"] == "already_active"


def test_initiate_rejects_free_course(client, free_course, gateway):
    r = client.post("/payment/initiate", json={"mode": "one-time", "course_id": free_course.id})

    assert r.status_code == 400, r.text
    assert gateway.orders == []


def test_gateway_failure_persists_nothing(client, db_session, paid_course, gateway):
    gateway.fail_on.add("create_order")

    r = client.post("/payment/initiate", json={"mode": "one-time", "course_id": paid_course.id})

    assert r.status_code == 502, r.text
    assert r.json()["type"] == "payment_gateway_error"
    assert db_session.query(Subscription).count() == 0


def test_missing_gateway_configuration_is_503(client, db_session, paid_course):
    from app.core.dependencies import get_payment_gateway
    from main import app

    app.dependency_overrides[get_payment_gateway] = lambda: None

    r = client.post("/payment/initiate", json={"mode": "one-time", "course_id": paid_course.id})

    assert r.status_code == 503, r.text
    assert db_session.query(Subscription).count() == 0


def test_unknown_mode_is_rejected_at_the_boundary(client, paid_course):
    r = client.post("/payment/initiate", json={"mode": "wallet", "course_id": paid_course.id})
    assert r.status_code == 422, r.text


def test_order_cannot_be_applied_to_another_course(client, db_session, student, paid_course):
    cheap = Course(name="Sampler", price=Decimal("1.00"), duration_in_days=30)
    db_session.add(cheap)
    db_session.commit()
    order = _initiate(client, cheap)

    r = client.post(
        "/payment/verify", json=_verify_payload(order["order_id"], "pay_cheap", paid_course)
    )

    assert r.status_code == 400, r.text
    assert db_session.query(CourseEntitlement).count() == 0
    assert db_session.query(Payment).count() == 0

    # The order still settles for the course it was created for, at its own price
    r = client.post("/payment/verify", json=_verify_payload(order["order_id"], "pay_cheap", cheap))

    assert r.status_code == 200, r.text
    assert db_session.query(CourseEntitlement).one().course_id == cheap.id
    assert db_session.query(Payment).one().amount == Decimal("1.00")


def test_order_of_another_user_is_rejected(
    client, act_as, db_session, other_student, paid_course
):
    order = _initiate(client, paid_course)
    act_as(other_student)

    r = client.post(
        "/payment/verify", json=_verify_payload(order["order_id"], "pay_001", paid_course)
    )

    assert r.status_code == 400, r.text
    assert db_session.query(CourseEntitlement).count() == 0
    assert db_session.query(Subscription).one().status == "pending"


def test_non_ascii_signature_is_rejected(client, db_session, paid_course):
    order = _initiate(client, paid_course)

    r = client.post(
        "/payment/verify",
        json=_verify_payload(order["order_id"], "pay_001", paid_course, signature="é" * 64),
    )

    assert r.status_code == 400, r.text
    assert r.json()["type"] == "invalid_signature"
    assert db_session.query(CourseEntitlement).count() == 0
