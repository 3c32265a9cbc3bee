# app/services/subscription_ledger.py
import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from app.core.decorator import db_exception
from app.models.enums import SubscriptionStatus, SubscriptionType
from app.models.subscription import Subscription
from app.utils.dt import utcnow

logger = logging.getLogger(__name__)


class SubscriptionLedger:
    """
    Enrollment attempts and their installment bookkeeping. Like the other
    stores it only flushes; commits belong to the engine.
    """

    def __init__(self, db: Session):
        self.db = db

    # -----------------------
    # Lookups
    # -----------------------
    def get(self, subscription_id: int) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(Subscription.id == subscription_id).first()

    def get_by_gateway_subscription(self, gateway_subscription_id: str) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.gateway_subscription_id == gateway_subscription_id)
            .first()
        )

    def get_by_order(self, order_id: str) -> Optional[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.gateway_order_id == order_id)
            .order_by(Subscription.id.desc())
            .first()
        )

    def list(
        self,
        user_id: Optional[int] = None,
        status: Optional[str] = None,
        page: int = 1,
        size: int = 20,
    ) -> Tuple[List[Subscription], dict]:
        query = self.db.query(Subscription).options(
            joinedload(Subscription.user), joinedload(Subscription.course)
        )
        if user_id is not None:
            query = query.filter(Subscription.user_id == user_id)
        if status:
            query = query.filter(Subscription.status == status)

        total = query.count()
        offset = (page - 1) * size
        items = (
            query.order_by(Subscription.created_at.desc(), Subscription.id.desc())
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
        return items, pagination

    # -----------------------
    # Writes
    # -----------------------
    @db_exception
    def create(
        self,
        user_id: int,
        course_id: int,
        type: SubscriptionType,
        status: SubscriptionStatus,
        amount=None,
        currency: str = "INR",
        **fields,
    ) -> Subscription:
        subscription = Subscription(
            user_id=user_id,
            course_id=course_id,
            type=type.value,
            status=status.value,
            amount=amount,
            currency=currency,
            paid_count=fields.pop("paid_count", 0),
            payment_history=fields.pop("payment_history", []),
            **fields,
        )
        self.db.add(subscription)
        self.db.flush()
        logger.info(
            f"Subscription {subscription.id} recorded: user={user_id} course={course_id} "
            f"type={type.value} status={status.value}"
        )
        return subscription

    @staticmethod
    def history_entry(
        payment_id: str,
        amount,
        currency: str,
        order_id: Optional[str] = None,
        status: str = "captured",
        paid_at: Optional[datetime] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return {
            "payment_id": payment_id,
            "order_id": order_id,
            "amount": float(amount) if amount is not None else None,
            "currency": currency,
            "status": status,
            "paid_at": (paid_at or utcnow()).isoformat(),
            "meta": meta or {},
        }

    @staticmethod
    def has_payment(subscription: Subscription, payment_id: str) -> bool:
        return any(
            entry.get("payment_id") == payment_id
            for entry in (subscription.payment_history or [])
        )

    @db_exception
    def append_history(self, subscription: Subscription, entry: Dict[str, Any]) -> None:
        # Reassign so the JSON column is marked dirty
        subscription.payment_history = list(subscription.payment_history or []) + [entry]
        self.db.flush()

    @db_exception
    def set_status(self, subscription: Subscription, status: SubscriptionStatus) -> Subscription:
        if subscription.status != status.value:
            logger.info(
                f"Subscription {subscription.id}: {subscription.status} -> {status.value}"
            )
            subscription.status = status.value
            self.db.flush()
        return subscription

    @db_exception
    def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        """
        Mark active free/one-time subscriptions whose expiry has passed as
        expired. Entitlement rows are left alone.
        """
        now = now or utcnow()
        count = (
            self.db.query(Subscription)
            .filter(
                Subscription.status == SubscriptionStatus.ACTIVE.value,
                Subscription.type.in_(
                    [SubscriptionType.FREE.value, SubscriptionType.ONE_TIME.value]
                ),
                Subscription.lifetime_access.is_(False),
                Subscription.expires_at.isnot(None),
                Subscription.expires_at < now,
            )
            .update(
                {Subscription.status: SubscriptionStatus.EXPIRED.value},
                synchronize_session=False,
            )
        )
        self.db.flush()
        return count
