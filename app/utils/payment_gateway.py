# app/utils/payment_gateway.py
import logging
from typing import Any, Dict, Optional

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError, ServerError

from app.core.exceptions import GatewayCustomerExists, PaymentGatewayError

logger = logging.getLogger(__name__)


class PaymentGateway:
    """
    Contract the entitlement engine relies on. Amounts are always in minor
    units (paise). Every method raises PaymentGatewayError on failure.
    """

    def create_order(self, amount_minor: int, currency: str, receipt: str) -> Dict[str, Any]:
        raise NotImplementedError

    def create_plan(
        self,
        period: str,
        interval: int,
        item_name: str,
        amount_minor: int,
        currency: str,
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def fetch_plan(self, plan_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def create_recurring_subscription(
        self, plan_id: str, total_count: int, notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def cancel_recurring_subscription(self, subscription_id: str) -> None:
        raise NotImplementedError

    def create_customer(self, name: str, email: str) -> Dict[str, Any]:
        raise NotImplementedError

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError


class RazorpayGateway(PaymentGateway):
    """Thin wrapper around the razorpay SDK client."""

    CUSTOMER_PAGE_SIZE = 100

    def __init__(self, key_id: str, key_secret: str, timeout: float = 15.0):
        if not key_id or not key_secret:
            raise PaymentGatewayError("Payment gateway is not configured", 503)
        self.key_id = key_id
        self.timeout = timeout
        self.client = razorpay.Client(auth=(key_id, key_secret))

    def _call(self, action: str, fn, *args, **kwargs):
        try:
            return fn(*args, timeout=self.timeout, **kwargs)
        except (BadRequestError, GatewayError, ServerError) as e:
            logger.error(f"Razorpay {action} failed: {e}")
            raise PaymentGatewayError(f"Payment gateway error during {action}: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Razorpay {action} unreachable: {e}")
            raise PaymentGatewayError(f"Payment gateway unreachable during {action}") from e

    # -----------------------
    # Orders
    # -----------------------
    def create_order(self, amount_minor: int, currency: str, receipt: str) -> Dict[str, Any]:
        order = self._call(
            "order creation",
            self.client.order.create,
            data={"amount": amount_minor, "currency": currency, "receipt": receipt},
        )
        logger.info(f"Razorpay order created: {order.get('id')} ({amount_minor} {currency})")
        return {
            "id": order["id"],
            "amount": order.get("amount", amount_minor),
            "currency": order.get("currency", currency),
        }

    # -----------------------
    # Plans
    # -----------------------
    def create_plan(
        self,
        period: str,
        interval: int,
        item_name: str,
        amount_minor: int,
        currency: str,
    ) -> Dict[str, Any]:
        plan = self._call(
            "plan creation",
            self.client.plan.create,
            data={
                "period": period,
                "interval": interval,
                "item": {"name": item_name, "amount": amount_minor, "currency": currency},
            },
        )
        logger.info(f"Razorpay plan created: {plan.get('id')} ({amount_minor} {currency}/{period})")
        return {"id": plan["id"]}

    def fetch_plan(self, plan_id: str) -> Optional[Dict[str, Any]]:
        """Returns None when the plan does not exist on the gateway."""
        try:
            plan = self.client.plan.fetch(plan_id, timeout=self.timeout)
        except BadRequestError as e:
            logger.warning(f"Razorpay plan {plan_id} not found: {e}")
            return None
        except (GatewayError, ServerError) as e:
            raise PaymentGatewayError(f"Payment gateway error during plan lookup: {e}") from e
        except requests.exceptions.RequestException as e:
            raise PaymentGatewayError("Payment gateway unreachable during plan lookup") from e

        item = plan.get("item") or {}
        return {"id": plan.get("id", plan_id), "amount": item.get("amount")}

    # -----------------------
    # Recurring subscriptions
    # -----------------------
    def create_recurring_subscription(
        self, plan_id: str, total_count: int, notes: Optional[Dict[str, str]] = None
    ) -> Dict[str, Any]:
        data = {"plan_id": plan_id, "total_count": total_count, "customer_notify": 1}
        if notes:
            data["notes"] = notes

        sub = self._call("subscription creation", self.client.subscription.create, data=data)
        logger.info(f"Razorpay subscription created: {sub.get('id')} on plan {plan_id}")
        return {
            "id": sub["id"],
            "status": sub.get("status"),
            "current_end": sub.get("current_end"),
        }

    def cancel_recurring_subscription(self, subscription_id: str) -> None:
        self._call("subscription cancellation", self.client.subscription.cancel, subscription_id)
        logger.info(f"Razorpay subscription cancelled: {subscription_id}")

    # -----------------------
    # Customers
    # -----------------------
    def create_customer(self, name: str, email: str) -> Dict[str, Any]:
        try:
            customer = self.client.customer.create(
                data={"name": name, "email": email}, timeout=self.timeout
            )
        except BadRequestError as e:
            if "already exists" in str(e).lower():
                raise GatewayCustomerExists(f"Customer already exists for {email}") from e
            raise PaymentGatewayError(f"Payment gateway error during customer creation: {e}") from e
        except (GatewayError, ServerError) as e:
            raise PaymentGatewayError(f"Payment gateway error during customer creation: {e}") from e
        except requests.exceptions.RequestException as e:
            raise PaymentGatewayError("Payment gateway unreachable during customer creation") from e

        return {"id": customer["id"]}

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        wanted = email.strip().lower()
        skip = 0
        while True:
            page = self._call(
                "customer lookup",
                self.client.customer.all,
                data={"count": self.CUSTOMER_PAGE_SIZE, "skip": skip},
            )
            items = page.get("items") or []
            for customer in items:
                if (customer.get("email") or "").strip().lower() == wanted:
                    return {"id": customer["id"]}
            if len(items) < self.CUSTOMER_PAGE_SIZE:
                return None
            skip += self.CUSTOMER_PAGE_SIZE
