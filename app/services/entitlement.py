# app/services/entitlement.py
import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import and_
from sqlalchemy.orm import Session, joinedload

from app.core.decorator import db_exception
from app.models.entitlement import CourseEntitlement
from app.utils.dt import as_utc_aware, utcnow

logger = logging.getLogger(__name__)

# "No expiry" is stored as a real date so is_active needs no special case
LIFETIME_SENTINEL = datetime(9999, 12, 31, tzinfo=timezone.utc)


def is_lifetime(expires_at: Optional[datetime]) -> bool:
    expires_at = as_utc_aware(expires_at)
    return expires_at is not None and expires_at >= LIFETIME_SENTINEL


class EntitlementService:
    """
    Per-user course access grants. Writes are flushed, not committed; the
    caller owns the transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int, course_id: int) -> Optional[CourseEntitlement]:
        return (
            self.db.query(CourseEntitlement)
            .filter(
                and_(
                    CourseEntitlement.user_id == user_id,
                    CourseEntitlement.course_id == course_id,
                )
            )
            .first()
        )

    @db_exception
    def grant_or_extend(
        self, user_id: int, course_id: int, expires_at: datetime
    ) -> CourseEntitlement:
        """
        Overwrite the expiry of an existing grant (resetting subscribed_at),
        or insert a new one. Re-granting the same expiry leaves the row as is.
        """
        entitlement = self.get(user_id, course_id)
        now = utcnow()

        if entitlement is None:
            entitlement = CourseEntitlement(
                user_id=user_id,
                course_id=course_id,
                subscribed_at=now,
                expires_at=expires_at,
            )
            self.db.add(entitlement)
            logger.info(f"Granted course {course_id} to user {user_id} until {expires_at}")
        elif as_utc_aware(entitlement.expires_at) != as_utc_aware(expires_at):
            entitlement.expires_at = expires_at
            entitlement.subscribed_at = now
            logger.info(f"Extended course {course_id} for user {user_id} to {expires_at}")

        self.db.flush()
        return entitlement

    @db_exception
    def revoke(self, user_id: int, course_id: int) -> bool:
        entitlement = self.get(user_id, course_id)
        if entitlement is None:
            return False
        self.db.delete(entitlement)
        self.db.flush()
        logger.info(f"Revoked course {course_id} from user {user_id}")
        return True

    def is_active(
        self, user_id: int, course_id: int, now: Optional[datetime] = None
    ) -> bool:
        entitlement = self.get(user_id, course_id)
        if entitlement is None:
            return False
        return as_utc_aware(entitlement.expires_at) > (now or utcnow())

    def list_for_user(self, user_id: int) -> List[CourseEntitlement]:
        return (
            self.db.query(CourseEntitlement)
            .options(joinedload(CourseEntitlement.course))
            .filter(CourseEntitlement.user_id == user_id)
            .order_by(CourseEntitlement.subscribed_at.desc())
            .all()
        )
