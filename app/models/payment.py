from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.sql import func

from app.core.database import Base


class Payment(Base):
    """
    Receipt of one settled charge. Append-only; gateway_payment_id is unique
    so the same charge can never be recorded twice.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    course_id = Column(Integer, ForeignKey("courses.id"), nullable=False, index=True)
    subscription_id = Column(
        Integer, ForeignKey("subscriptions.id"), nullable=True, index=True
    )

    gateway_order_id = Column(String(64), nullable=True)
    gateway_payment_id = Column(String(64), nullable=False, unique=True, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")

    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self):
        return f"<Payment(id={self.id}, payment_id='{self.gateway_payment_id}', amount={self.amount})>"
