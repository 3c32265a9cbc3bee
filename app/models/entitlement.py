from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.sql import func

from app.core.database import Base


class CourseEntitlement(Base):
    """
    A user's access grant to a course. One row per (user, course); a new
    enrollment overwrites the row in place.
    """

    __tablename__ = "course_entitlements"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    course_id = Column(
        Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )

    subscribed_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expires_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_course_entitlements_user_course"),
    )

    def __repr__(self):
        return f"<CourseEntitlement(user_id={self.user_id}, course_id={self.course_id}, expires_at={self.expires_at})>"
