from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from app.core.database import Base
from app.models.enums import SubscriptionStatus

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Subscription(Base):
    """
    One enrollment attempt of a user for a course: free, one-time or EMI.
    Rows are never deleted; cancellation only changes the status.
    """

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)

    # free / one-time / subscription
    type = Column(String(20), nullable=False)
    status = Column(
        String(20), nullable=False, default=SubscriptionStatus.PENDING.value, index=True
    )

    amount = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="INR")

    # Gateway correlation
    gateway_order_id = Column(String(64), nullable=True, index=True)
    gateway_subscription_id = Column(String(64), nullable=True, index=True)
    gateway_plan_id = Column(String(64), nullable=True)

    # Installment bookkeeping (subscription type only)
    total_count = Column(Integer, nullable=True)
    paid_count = Column(Integer, nullable=False, default=0)
    next_payment_at = Column(DateTime(timezone=True), nullable=True)

    expires_at = Column(DateTime(timezone=True), nullable=True)
    lifetime_access = Column(Boolean, nullable=False, default=False)

    # Display copy of settled payments; the payments table is authoritative
    payment_history = Column(JSONType, nullable=False, default=list)
    meta = Column("metadata", JSONType, nullable=True)

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("ix_subscriptions_user_course", "user_id", "course_id"),)

    def __repr__(self):
        return f"<Subscription(id={self.id}, type={self.type}, status={self.status}, paid={self.paid_count}/{self.total_count})>"
