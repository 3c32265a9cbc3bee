from datetime import datetime, timedelta, timezone
from decimal import Decimal

from app.services.entitlement import LIFETIME_SENTINEL, EntitlementService, is_lifetime
from app.services.entitlement_engine import add_days, to_minor_units
from app.utils.dt import as_utc_aware


def test_grant_inserts_then_overwrites_in_place(db_session, student, paid_course):
    service = EntitlementService(db_session)
    first = datetime.now(timezone.utc) + timedelta(days=10)
    second = first + timedelta(days=30)

    service.grant_or_extend(student.id, paid_course.id, first)
    service.grant_or_extend(student.id, paid_course.id, second)
    db_session.commit()

    rows = service.list_for_user(student.id)
    assert len(rows) == 1
    assert as_utc_aware(rows[0].expires_at) == second


def test_regrant_with_same_expiry_keeps_subscribed_at(db_session, student, paid_course):
    service = EntitlementService(db_session)
    expires_at = datetime.now(timezone.utc) + timedelta(days=10)

    entitlement = service.grant_or_extend(student.id, paid_course.id, expires_at)
    db_session.commit()
    subscribed_at = entitlement.subscribed_at

    service.grant_or_extend(student.id, paid_course.id, expires_at)
    db_session.commit()

    assert service.get(student.id, paid_course.id).subscribed_at == subscribed_at


def test_is_active_compares_against_now(db_session, student, paid_course):
    service = EntitlementService(db_session)
    now = datetime.now(timezone.utc)
    service.grant_or_extend(student.id, paid_course.id, now + timedelta(hours=1))
    db_session.commit()

    assert service.is_active(student.id, paid_course.id, now) is True
    assert service.is_active(student.id, paid_course.id, now + timedelta(hours=2)) is False


def test_lifetime_sentinel_is_active_without_special_case(db_session, student, paid_course):
    service = EntitlementService(db_session)
    service.grant_or_extend(student.id, paid_course.id, LIFETIME_SENTINEL)
    db_session.commit()

    assert service.is_active(student.id, paid_course.id) is True
    assert is_lifetime(service.get(student.id, paid_course.id).expires_at)


def test_revoke_removes_row(db_session, student, paid_course):
    service = EntitlementService(db_session)
    service.grant_or_extend(student.id, paid_course.id, LIFETIME_SENTINEL)
    db_session.commit()

    assert service.revoke(student.id, paid_course.id) is True
    db_session.commit()

    assert service.get(student.id, paid_course.id) is None
    assert service.revoke(student.id, paid_course.id) is False


def test_to_minor_units_rounds_half_up():
    assert to_minor_units(Decimal("1200.00")) == 120000
    assert to_minor_units(Decimal("0.005")) == 1
    assert to_minor_units(None) == 0


def test_add_days_saturates_at_sentinel():
    assert add_days(LIFETIME_SENTINEL, 30) == LIFETIME_SENTINEL
    near_end = datetime(9999, 12, 20, tzinfo=timezone.utc)
    assert add_days(near_end, 30) == LIFETIME_SENTINEL
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert add_days(start, 365) == datetime(2027, 1, 1, tzinfo=timezone.utc)
