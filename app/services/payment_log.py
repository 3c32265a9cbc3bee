# app/services/payment_log.py
import logging
import math
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from app.core.decorator import db_exception
from app.models.payment import Payment

logger = logging.getLogger(__name__)


class PaymentLogService:
    """
    Append-only record of settled payments, keyed by the gateway payment id.
    This is the audit source; Subscription.payment_history only mirrors it.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_by_gateway_payment(self, gateway_payment_id: str) -> Optional[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.gateway_payment_id == gateway_payment_id)
            .first()
        )

    def exists(self, gateway_payment_id: str) -> bool:
        return self.get_by_gateway_payment(gateway_payment_id) is not None

    @db_exception
    def record(
        self,
        user_id: int,
        course_id: int,
        gateway_payment_id: str,
        amount,
        currency: str = "INR",
        gateway_order_id: Optional[str] = None,
        subscription_id: Optional[int] = None,
    ) -> Payment:
        payment = Payment(
            user_id=user_id,
            course_id=course_id,
            subscription_id=subscription_id,
            gateway_order_id=gateway_order_id,
            gateway_payment_id=gateway_payment_id,
            amount=amount,
            currency=currency,
        )
        self.db.add(payment)
        self.db.flush()
        logger.info(
            f"Payment {gateway_payment_id} recorded: user={user_id} course={course_id} "
            f"amount={amount} {currency}"
        )
        return payment

    def list(
        self, user_id: Optional[int] = None, page: int = 1, size: int = 20
    ) -> Tuple[List[Payment], dict]:
        """Payments newest first, optionally for a single user."""
        query = self.db.query(Payment).options(
            joinedload(Payment.user), joinedload(Payment.course)
        )
        if user_id is not None:
            query = query.filter(Payment.user_id == user_id)

        total = query.count()
        offset = (page - 1) * size
        payments = (
            query.order_by(Payment.created_at.desc(), Payment.id.desc())
            .offset(offset)
            .limit(size)
            .all()
        )
        pagination = {
            "total": total,
            "page": page,
            "size": size,
            "total_pages": math.ceil(total / size) if size > 0 else 0,
        }
        return payments, pagination
