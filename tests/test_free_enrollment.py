from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.core.exceptions import PersistenceError
from app.models import Course, CourseEntitlement, Subscription
from app.services.subscription_ledger import SubscriptionLedger
from app.utils.dt import as_utc_aware


def _entitlement(db_session, user, course):
    return (
        db_session.query(CourseEntitlement)
        .filter_by(user_id=user.id, course_id=course.id)
        .first()
    )


def test_free_enroll_grants_duration_and_records_subscription(
    client, db_session, student, free_course, notifier
):
    before = datetime.now(timezone.utc)
    r = client.post(f"/courses/{free_course.id}/enroll")
    after = datetime.now(timezone.utc)

    assert r.status_code == 201, r.text
    body = r.json()
    assert body["course_id"] == free_course.id
    assert body["subscription_id"] is not None

    entitlement = _entitlement(db_session, student, free_course)
    expires_at = as_utc_aware(entitlement.expires_at)
    assert before + timedelta(days=90) <= expires_at <= after + timedelta(days=90)

    sub = db_session.query(Subscription).one()
    assert sub.type == "free"
    assert sub.status == "active"
    assert sub.meta["source"] == "manual-free-enroll"

    assert notifier.subjects == ["Enrollment Confirmed"]
    assert notifier.sent[0]["to"] == student.email
    assert notifier.sent[0]["course_title"] == free_course.name


def test_second_free_enroll_before_expiry_is_rejected(client, db_session, free_course):
    r = client.post(f"/courses/{free_course.id}/enroll")
    assert r.status_code == 201, r.text
    first_expiry = as_utc_aware(db_session.query(CourseEntitlement).one().expires_at)

    r = client.post(f"/courses/{free_course.id}/enroll")
    assert r.status_code == 409, r.text
    assert r.json() == {"error": "You are already enrolled.", "type": "already_enrolled"}

    db_session.expire_all()
    assert as_utc_aware(db_session.query(CourseEntitlement).one().expires_at) == first_expiry


def test_free_enroll_after_expiry_extends_existing_entry(
    client, db_session, student, free_course
):
    r = client.post(f"/courses/{free_course.id}/enroll")
    assert r.status_code == 201, r.text

    entitlement = _entitlement(db_session, student, free_course)
    entitlement.expires_at = datetime.now(timezone.utc) - timedelta(days=1)
    db_session.commit()

    r = client.post(f"/courses/{free_course.id}/enroll")
    assert r.status_code == 201, r.text

    db_session.expire_all()
    rows = db_session.query(CourseEntitlement).filter_by(user_id=student.id).all()
    assert len(rows) == 1
    assert as_utc_aware(rows[0].expires_at) > datetime.now(timezone.utc) + timedelta(days=89)


def test_free_enroll_rejects_paid_course(client, db_session, paid_course):
    r = client.post(f"/courses/{paid_course.id}/enroll")

    assert r.status_code == 400, r.text
    assert r.json()["error"] == "This is a paid course. Please proceed to payment."
    assert db_session.query(CourseEntitlement).count() == 0


def test_free_enroll_unknown_course_is_404(client):
    r = client.post("/courses/9999/enroll")
    assert r.status_code == 404, r.text
    assert r.json()["type"] == "not_found"


def test_free_mode_through_initiate(client, db_session, free_course):
    r = client.post("/payment/initiate", json={"mode": "free", "course_id": free_course.id})

    assert r.status_code == 200, r.text
    assert r.json()["message"] == "Enrolled successfully"
    assert db_session.query(CourseEntitlement).count() == 1


def test_subscription_record_failure_keeps_grant(
    client, db_session, student, free_course, monkeypatch
):
    def broken_create(self, *args, **kwargs):
        raise PersistenceError()

    monkeypatch.setattr(SubscriptionLedger, "create", broken_create)

    r = client.post(f"/courses/{free_course.id}/enroll")

    assert r.status_code == 201, r.text
    assert r.json()["subscription_id"] is None
    assert _entitlement(db_session, student, free_course) is not None
    assert db_session.query(Subscription).count() == 0


def test_notification_failure_does_not_fail_enrollment(
    client, db_session, free_course, notifier
):
    notifier.fail = True

    r = client.post(f"/courses/{free_course.id}/enroll")

    assert r.status_code == 201, r.text
    assert db_session.query(CourseEntitlement).count() == 1


def test_admin_cannot_use_student_enrollment(client, act_as, admin, free_course):
    act_as(admin)
    r = client.post(f"/courses/{free_course.id}/enroll")
    assert r.status_code == 403, r.text


def test_course_is_free_only_without_a_price():
    assert Course(name="a", price=Decimal("0.00")).is_free is True
    assert Course(name="b", price=None).is_free is True
    assert Course(name="c", price=Decimal("0.50")).is_free is False
