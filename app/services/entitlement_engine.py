# app/services/entitlement_engine.py
import json
import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    AlreadyActive,
    AlreadyEnrolled,
    GatewayCustomerExists,
    InvalidSignature,
    NotFound,
    PaymentGatewayError,
    PersistenceError,
    ValidationError,
    WebhookPayloadError,
)
from app.models.course import Course, CourseEmiPlan
from app.models.enums import TERMINAL_STATUSES, SubscriptionStatus, SubscriptionType
from app.models.subscription import Subscription
from app.models.user import User
from app.schemas.payment import (
    EmiInitiateRequest,
    FreeEnrollRequest,
    OneTimeInitiateRequest,
    VerifyPaymentRequest,
)
from app.services.entitlement import LIFETIME_SENTINEL, EntitlementService, is_lifetime
from app.services.payment_log import PaymentLogService
from app.services.subscription_ledger import SubscriptionLedger
from app.utils.dt import as_utc_aware, from_unix, utcnow
from app.utils.notifier import Notifier
from app.utils.payment_gateway import PaymentGateway
from app.utils.signature import verify_payment_signature, verify_webhook_signature

logger = logging.getLogger(__name__)


def to_minor_units(amount) -> int:
    """Currency units to paise, rounding half up."""
    value = Decimal(str(amount or 0)) * 100
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def add_days(base: datetime, days: int) -> datetime:
    """Date arithmetic that saturates at the lifetime sentinel instead of overflowing."""
    if is_lifetime(base):
        return LIFETIME_SENTINEL
    try:
        return min(base + timedelta(days=days), LIFETIME_SENTINEL)
    except OverflowError:
        return LIFETIME_SENTINEL


class EntitlementEngine:
    """
    Orchestrates enrollment, payment verification, webhook reconciliation
    and cancellation on top of the entitlement, subscription and payment
    stores.

    Gateway objects are always created before local rows are written, so a
    gateway failure never leaves a half-created enrollment behind.
    """

    def __init__(
        self,
        db: Session,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.clock = clock

        self.entitlements = EntitlementService(db)
        self.ledger = SubscriptionLedger(db)
        self.payments = PaymentLogService(db)

    # ============================
    # Helpers
    # ============================
    def _commit(self):
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Commit failed: {type(e).__name__}: {e}")
            raise PersistenceError() from e

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise PaymentGatewayError("Payment gateway is not configured", 503)
        return self.gateway

    def _get_course(self, course_id: int) -> Course:
        course = self.db.query(Course).filter(Course.id == course_id).first()
        if not course:
            raise NotFound("Course not found")
        return course

    @staticmethod
    def _duration(course: Course) -> int:
        return course.duration_in_days or settings.default_course_duration_days

    def _notify(
        self,
        user: User,
        course: Course,
        subject: str,
        body_lines: List[str],
        expires_at: Optional[datetime] = None,
    ):
        if self.notifier is None:
            return
        try:
            self.notifier.send(
                to_address=user.telegram_id or user.email,
                subject=subject,
                body_lines=body_lines,
                course_title=course.name,
                expires_at=expires_at,
            )
        except Exception as e:
            logger.error(f"Notification '{subject}' for user {user.id} failed: {e}")

    # ============================
    # Initiation
    # ============================
    def initiate(self, user: User, request) -> Dict[str, Any]:
        if isinstance(request, FreeEnrollRequest):
            return self.enroll_free(user, request.course_id)
        if isinstance(request, OneTimeInitiateRequest):
            return self.initiate_one_time(user, request.course_id)
        if isinstance(request, EmiInitiateRequest):
            return self.initiate_emi(user, request)
        raise ValidationError("Unsupported payment mode")

    def enroll_free(self, user: User, course_id: int) -> Dict[str, Any]:
        """
        Free courses only. Expiry is plain now + duration; there is no
        lifetime threshold on this path.
        """
        course = self._get_course(course_id)
        if not course.is_free:
            raise ValidationError("This is a paid course. Please proceed to payment.")

        now = self.clock()
        if self.entitlements.is_active(user.id, course.id, now):
            raise AlreadyEnrolled()

        expires_at = add_days(now, self._duration(course))
        self.entitlements.grant_or_extend(user.id, course.id, expires_at)
        self._commit()
        logger.info(f"User {user.id} enrolled for free in course {course.id}")

        # The enrollment record is informational; the grant above stands either way
        subscription_id = None
        try:
            subscription = self.ledger.create(
                user.id,
                course.id,
                SubscriptionType.FREE,
                SubscriptionStatus.ACTIVE,
                amount=0,
                currency=settings.payment_currency,
                expires_at=expires_at,
                meta={"source": "manual-free-enroll"},
            )
            self._commit()
            subscription_id = subscription.id
        except (PersistenceError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(
                f"Free enrollment record for user {user.id} course {course.id} not saved: {e}"
            )

        self._notify(
            user,
            course,
            "Enrollment Confirmed",
            ["You have been enrolled successfully. Access granted."],
            expires_at,
        )
        return {
            "message": "Enrolled successfully",
            "course_id": course.id,
            "expires_at": expires_at,
            "subscription_id": subscription_id,
        }

    def initiate_one_time(self, user: User, course_id: int) -> Dict[str, Any]:
        course = self._get_course(course_id)
        amount_minor = to_minor_units(course.price)
        if course.is_free or amount_minor <= 0:
            raise ValidationError("This course is free. Enroll directly instead.")

        now = self.clock()
        if self.entitlements.is_active(user.id, course.id, now):
            raise AlreadyActive()

        gateway = self._require_gateway()
        currency = settings.payment_currency
        receipt = f"rcpt_{user.id}_{course.id}_{int(now.timestamp() * 1000)}"
        order = gateway.create_order(amount_minor, currency, receipt)

        try:
            subscription = self.ledger.create(
                user.id,
                course.id,
                SubscriptionType.ONE_TIME,
                SubscriptionStatus.PENDING,
                amount=course.price,
                currency=currency,
                gateway_order_id=order["id"],
                meta={"source": "checkout", "receipt": receipt},
            )
            self._commit()
        except PersistenceError:
            logger.error(
                f"Gateway order {order['id']} created for user {user.id} course {course.id} "
                f"but the pending subscription could not be saved"
            )
            raise

        return {
            "order_id": order["id"],
            "amount": order.get("amount", amount_minor),
            "currency": order.get("currency", currency),
            "course_title": course.name,
            "key_id": settings.razorpay_key_id,
            "subscription_id": subscription.id,
        }

    # ============================
    # One-time verification
    # ============================
    def verify_payment(self, user: User, request: VerifyPaymentRequest) -> Dict[str, Any]:
        order_id = request.razorpay_order_id
        payment_id = request.razorpay_payment_id

        if not verify_payment_signature(
            order_id, payment_id, request.razorpay_signature, settings.razorpay_key_secret
        ):
            logger.warning(
                f"Payment signature mismatch for user {user.id} order {order_id} "
                f"payment {payment_id}: possible tampering"
            )
            raise InvalidSignature()

        course = self._get_course(request.course_id)

        existing = self.payments.get_by_gateway_payment(payment_id)
        if existing is not None:
            return self._already_verified(user, course, existing)

        order_subscription = self.ledger.get_by_order(order_id)
        if order_subscription is not None and (
            order_subscription.user_id != user.id
            or order_subscription.course_id != course.id
            or order_subscription.type != SubscriptionType.ONE_TIME.value
        ):
            logger.warning(
                f"Order {order_id} belongs to user {order_subscription.user_id} course "
                f"{order_subscription.course_id}, not user {user.id} course {course.id}"
            )
            raise ValidationError("This payment does not belong to the selected course.")

        now = self.clock()
        duration = self._duration(course)
        lifetime = duration > settings.lifetime_threshold_days
        expires_at = LIFETIME_SENTINEL if lifetime else add_days(now, duration)

        self.entitlements.grant_or_extend(user.id, course.id, expires_at)

        subscription = order_subscription
        if subscription is None or subscription.status in TERMINAL_STATUSES:
            subscription = self.ledger.create(
                user.id,
                course.id,
                SubscriptionType.ONE_TIME,
                SubscriptionStatus.ACTIVE,
                amount=course.price,
                currency=settings.payment_currency,
                gateway_order_id=order_id,
                meta={"source": "verify"},
            )

        paid_amount = subscription.amount if subscription.amount is not None else course.price
        self.payments.record(
            user_id=user.id,
            course_id=course.id,
            gateway_payment_id=payment_id,
            amount=paid_amount,
            currency=subscription.currency,
            gateway_order_id=order_id,
            subscription_id=subscription.id,
        )

        self.ledger.set_status(subscription, SubscriptionStatus.ACTIVE)
        subscription.expires_at = expires_at
        subscription.lifetime_access = lifetime
        self.ledger.append_history(
            subscription,
            self.ledger.history_entry(
                payment_id,
                paid_amount,
                subscription.currency,
                order_id=order_id,
                paid_at=now,
            ),
        )
        self._commit()
        logger.info(f"Payment {payment_id} verified: user {user.id} course {course.id}")

        self._notify(
            user,
            course,
            "Enrollment Confirmed",
            ["Payment successful! Access granted."],
            expires_at,
        )
        return {
            "message": "Payment successful!",
            "course_id": course.id,
            "payment_id": payment_id,
            "expires_at": expires_at,
            "lifetime_access": lifetime,
            "subscription_id": subscription.id,
            "already_processed": False,
        }

    def _already_verified(self, user: User, course: Course, payment) -> Dict[str, Any]:
        if payment.user_id != user.id or payment.course_id != course.id:
            logger.warning(
                f"Payment {payment.gateway_payment_id} replayed by user {user.id} "
                f"for course {course.id}"
            )
            raise ValidationError("This payment has already been applied to another enrollment.")

        subscription = (
            self.ledger.get(payment.subscription_id) if payment.subscription_id else None
        )
        entitlement = self.entitlements.get(user.id, course.id)
        if entitlement is not None:
            expires_at = as_utc_aware(entitlement.expires_at)
        elif subscription is not None and subscription.expires_at is not None:
            expires_at = as_utc_aware(subscription.expires_at)
        else:
            expires_at = self.clock()

        logger.info(f"Payment {payment.gateway_payment_id} already verified, nothing to do")
        return {
            "message": "Payment already verified",
            "course_id": course.id,
            "payment_id": payment.gateway_payment_id,
            "expires_at": expires_at,
            "lifetime_access": bool(subscription and subscription.lifetime_access),
            "subscription_id": subscription.id if subscription else None,
            "already_processed": True,
        }

    # ============================
    # EMI
    # ============================
    def _ensure_customer(self, user: User, gateway: PaymentGateway) -> str:
        if user.gateway_customer_id:
            return user.gateway_customer_id

        try:
            customer = gateway.create_customer(user.display_name, user.email)
        except GatewayCustomerExists:
            customer = gateway.find_customer_by_email(user.email)
            if customer is None:
                raise PaymentGatewayError(
                    "Gateway reports an existing customer but it could not be found"
                )
            logger.info(f"Reusing existing gateway customer for user {user.id}")

        user.gateway_customer_id = customer["id"]
        return customer["id"]

    def _resolve_plan(
        self,
        gateway: PaymentGateway,
        course: Course,
        per_installment: int,
        candidate: Optional[str],
    ) -> str:
        """Reuse `candidate` only if its amount still matches, else create a monthly plan."""
        if candidate:
            plan = gateway.fetch_plan(candidate)
            if plan is not None and plan.get("amount") == per_installment:
                return candidate
            logger.info(
                f"Plan {candidate} does not match {per_installment} for course {course.id}, "
                f"creating a new one"
            )

        plan = gateway.create_plan(
            period="monthly",
            interval=1,
            item_name=f"{course.name} - EMI",
            amount_minor=per_installment,
            currency=settings.payment_currency,
        )
        return plan["id"]

    def initiate_emi(self, user: User, request: EmiInitiateRequest) -> Dict[str, Any]:
        course = self._get_course(request.course_id)
        price_minor = to_minor_units(course.price)
        if price_minor <= 0:
            raise ValidationError("EMI is only available for paid courses.")

        now = self.clock()
        if self.entitlements.is_active(user.id, course.id, now):
            raise AlreadyActive()

        template = None
        if request.emi_plan_id is not None:
            template = (
                self.db.query(CourseEmiPlan)
                .filter(
                    CourseEmiPlan.id == request.emi_plan_id,
                    CourseEmiPlan.course_id == course.id,
                )
                .first()
            )
            if template is None:
                raise NotFound("EMI plan not found for this course")

        if template is not None:
            count = template.installments
        else:
            count = request.total_count or settings.default_emi_installments
        if not count or count < 1:
            raise ValidationError("Installment count must be at least 1")

        if template is not None and template.per_installment_amount:
            per_installment = to_minor_units(template.per_installment_amount)
        else:
            per_installment = int(
                (Decimal(price_minor) / count).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
            )

        gateway = self._require_gateway()
        customer_id = self._ensure_customer(user, gateway)

        candidate = template.gateway_plan_id if template is not None else request.plan_id
        plan_id = self._resolve_plan(gateway, course, per_installment, candidate)
        if template is not None and template.gateway_plan_id != plan_id:
            template.gateway_plan_id = plan_id

        remote = gateway.create_recurring_subscription(
            plan_id,
            count,
            notes={
                "user_id": str(user.id),
                "course_id": str(course.id),
                "customer_id": customer_id,
            },
        )

        remote_status = (remote.get("status") or "").lower()
        if remote_status == SubscriptionStatus.ACTIVE.value:
            status = SubscriptionStatus.ACTIVE
        elif remote_status == SubscriptionStatus.COMPLETED.value:
            status = SubscriptionStatus.COMPLETED
        else:
            status = SubscriptionStatus.PENDING

        next_payment_at = from_unix(remote.get("current_end")) or add_days(
            now, settings.emi_renewal_window_days
        )
        emi_snapshot = {
            "emi_plan_id": template.id if template is not None else None,
            "name": template.name if template is not None else None,
            "installments": count,
            "per_installment_minor": per_installment,
            "interest_percent": (
                float(template.interest_percent or 0) if template is not None else 0.0
            ),
            "customer_id": customer_id,
        }

        try:
            subscription = self.ledger.create(
                user.id,
                course.id,
                SubscriptionType.SUBSCRIPTION,
                status,
                amount=Decimal(per_installment * count) / 100,
                currency=settings.payment_currency,
                gateway_subscription_id=remote["id"],
                gateway_plan_id=plan_id,
                total_count=count,
                paid_count=0,
                next_payment_at=next_payment_at,
                meta={"source": "emi-checkout", "emi": emi_snapshot},
            )
            self._commit()
        except PersistenceError:
            logger.error(
                f"Gateway subscription {remote['id']} created for user {user.id} "
                f"course {course.id} but could not be saved locally"
            )
            raise

        logger.info(
            f"EMI started: user {user.id} course {course.id} {count} x {per_installment} "
            f"(gateway subscription {remote['id']})"
        )
        return {
            "subscription_id": remote["id"],
            "key_id": settings.razorpay_key_id,
            "plan_id": plan_id,
            "total_count": count,
            "per_installment_amount": per_installment,
            "status": status.value,
            "next_payment_at": next_payment_at,
            "local_subscription_id": subscription.id,
        }

    # ============================
    # Webhooks
    # ============================
    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> str:
        """
        Reconcile one gateway event. Returns the acknowledgement status.
        Once the signature is verified every outcome is acknowledged except a
        payload that cannot be parsed.
        """
        if not verify_webhook_signature(raw_body, signature, settings.razorpay_webhook_secret):
            logger.warning("Webhook signature mismatch, rejecting event")
            raise InvalidSignature()

        try:
            body = json.loads(raw_body)
            event = body["event"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Webhook payload could not be parsed: {e}")
            raise WebhookPayloadError() from e

        handlers = {
            "subscription.charged": self._on_subscription_charged,
            "subscription.halted": self._on_subscription_terminated,
            "subscription.cancelled": self._on_subscription_terminated,
        }
        handler = handlers.get(event)
        if handler is None:
            logger.info(f"Webhook event {event} ignored")
            return "ignored"

        try:
            payload = body["payload"]
            subscription_entity = payload["subscription"]["entity"]
            gateway_subscription_id = subscription_entity["id"]
            payment_entity = None
            if event == "subscription.charged":
                payment_entity = payload["payment"]["entity"]
                if not payment_entity.get("id"):
                    raise KeyError("payment.entity.id")
        except (KeyError, TypeError) as e:
            logger.error(f"Webhook {event} payload is missing fields: {e}")
            raise WebhookPayloadError() from e

        try:
            return handler(event, gateway_subscription_id, subscription_entity, payment_entity)
        except (PersistenceError, SQLAlchemyError) as e:
            self.db.rollback()
            logger.error(
                f"Webhook {event} for {gateway_subscription_id} could not be applied: {e}"
            )
            return "error"

    def _on_subscription_charged(
        self,
        event: str,
        gateway_subscription_id: str,
        subscription_entity: Dict[str, Any],
        payment_entity: Dict[str, Any],
    ) -> str:
        subscription = self.ledger.get_by_gateway_subscription(gateway_subscription_id)
        if subscription is None:
            logger.info(f"Charge for unknown subscription {gateway_subscription_id} ignored")
            return "ignored"

        payment_id = payment_entity["id"]
        if self.payments.exists(payment_id) or self.ledger.has_payment(subscription, payment_id):
            logger.info(
                f"Duplicate charge {payment_id} for subscription {subscription.id} ignored"
            )
            return "duplicate"

        now = self.clock()
        course = subscription.course
        user = subscription.user
        amount = Decimal(str(payment_entity.get("amount") or 0)) / 100
        currency = payment_entity.get("currency") or subscription.currency
        paid_at = from_unix(payment_entity.get("created_at")) or now

        if subscription.status in TERMINAL_STATUSES:
            # Keep the receipt, leave access and counters alone
            logger.warning(
                f"Charge {payment_id} received for {subscription.status} subscription "
                f"{subscription.id}; recording payment only"
            )
            self.payments.record(
                user_id=subscription.user_id,
                course_id=subscription.course_id,
                gateway_payment_id=payment_id,
                amount=amount,
                currency=currency,
                gateway_order_id=payment_entity.get("order_id"),
                subscription_id=subscription.id,
            )
            self._commit()
            return "recorded"

        subscription.paid_count = (subscription.paid_count or 0) + 1
        installment = subscription.paid_count

        self.ledger.append_history(
            subscription,
            self.ledger.history_entry(
                payment_id,
                amount,
                currency,
                order_id=payment_entity.get("order_id"),
                status=payment_entity.get("status") or "captured",
                paid_at=paid_at,
                meta={"event": event, "installment": installment},
            ),
        )
        self.payments.record(
            user_id=subscription.user_id,
            course_id=subscription.course_id,
            gateway_payment_id=payment_id,
            amount=amount,
            currency=currency,
            gateway_order_id=payment_entity.get("order_id"),
            subscription_id=subscription.id,
        )

        subscription.next_payment_at = from_unix(
            subscription_entity.get("charge_at")
        ) or from_unix(subscription_entity.get("current_end"))

        if installment == 1:
            expires_at = add_days(now, self._duration(course))
            subject = "Enrollment Confirmed"
            body_lines = ["Your first installment was received. Access granted."]
        else:
            entitlement = self.entitlements.get(subscription.user_id, subscription.course_id)
            current = as_utc_aware(
                entitlement.expires_at if entitlement is not None else subscription.expires_at
            )
            base = max(now, current) if current is not None else now
            expires_at = add_days(base, settings.emi_renewal_window_days)
            subject = "Installment Received"
            body_lines = [f"Installment {installment} received. Access extended."]

        self.ledger.set_status(subscription, SubscriptionStatus.ACTIVE)

        if subscription.total_count and installment >= subscription.total_count:
            expires_at = LIFETIME_SENTINEL
            self.ledger.set_status(subscription, SubscriptionStatus.COMPLETED)
            subscription.lifetime_access = True
            subscription.next_payment_at = None
            body_lines.append("All installments paid. You now have lifetime access.")

        subscription.expires_at = expires_at
        self.entitlements.grant_or_extend(
            subscription.user_id, subscription.course_id, expires_at
        )
        self._commit()
        logger.info(
            f"Subscription {subscription.id} charged ({installment}/{subscription.total_count}), "
            f"access until {expires_at}"
        )

        self._notify(user, course, subject, body_lines, expires_at)
        return "ok"

    def _on_subscription_terminated(
        self,
        event: str,
        gateway_subscription_id: str,
        subscription_entity: Dict[str, Any],
        payment_entity: Optional[Dict[str, Any]] = None,
    ) -> str:
        subscription = self.ledger.get_by_gateway_subscription(gateway_subscription_id)
        if subscription is None:
            logger.info(f"{event} for unknown subscription {gateway_subscription_id} ignored")
            return "ignored"

        if subscription.status == SubscriptionStatus.COMPLETED.value:
            logger.info(f"{event} for completed subscription {subscription.id} ignored")
            return "ignored"

        self.ledger.set_status(subscription, SubscriptionStatus.CANCELLED)
        self.entitlements.revoke(subscription.user_id, subscription.course_id)
        self._commit()
        logger.info(f"Subscription {subscription.id} cancelled by gateway event {event}")
        return "ok"

    # ============================
    # Cancellation
    # ============================
    def cancel_subscription(self, subscription_id: int, actor: User) -> Subscription:
        subscription = self.ledger.get(subscription_id)
        # Students only see their own subscriptions
        if subscription is None or (
            not actor.is_admin and subscription.user_id != actor.id
        ):
            raise NotFound("Subscription not found")

        if subscription.status == SubscriptionStatus.CANCELLED.value:
            return subscription
        if subscription.status == SubscriptionStatus.COMPLETED.value:
            raise ValidationError("A completed subscription cannot be cancelled.")

        if subscription.gateway_subscription_id:
            if self.gateway is None:
                logger.warning(
                    f"Gateway not configured; subscription {subscription.gateway_subscription_id} "
                    f"not cancelled remotely"
                )
            else:
                try:
                    self.gateway.cancel_recurring_subscription(
                        subscription.gateway_subscription_id
                    )
                except PaymentGatewayError as e:
                    logger.warning(
                        f"Remote cancel of {subscription.gateway_subscription_id} failed: {e.message}"
                    )

        self.ledger.set_status(subscription, SubscriptionStatus.CANCELLED)
        self.entitlements.revoke(subscription.user_id, subscription.course_id)
        self._commit()
        logger.info(f"Subscription {subscription.id} cancelled by user {actor.id}")
        return subscription

    # ============================
    # Queries
    # ============================
    def status(self, user: User) -> List[Dict[str, Any]]:
        now = self.clock()
        result = []
        for entitlement in self.entitlements.list_for_user(user.id):
            expires_at = as_utc_aware(entitlement.expires_at)
            result.append(
                {
                    "course_id": entitlement.course_id,
                    "course_title": entitlement.course.name if entitlement.course else None,
                    "status": "active" if expires_at > now else "expired",
                    "subscribed_at": as_utc_aware(entitlement.subscribed_at),
                    "expires_at": expires_at,
                }
            )
        return result

    def check_access(self, user: User, course_id: int) -> Dict[str, Any]:
        entitlement = self.entitlements.get(user.id, course_id)
        expires_at = as_utc_aware(entitlement.expires_at) if entitlement else None
        return {
            "course_id": course_id,
            "is_active": expires_at is not None and expires_at > self.clock(),
            "expires_at": expires_at,
        }
