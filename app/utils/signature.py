# app/utils/signature.py
import hashlib
import hmac
import logging
from typing import Optional, Union

logger = logging.getLogger(__name__)


def compute_signature(message: Union[str, bytes], secret: str) -> str:
    """Hex encoded HMAC-SHA256 of `message` keyed by `secret`."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _matches(expected: str, received: Optional[Union[str, bytes]]) -> bool:
    if not received:
        return False
    if isinstance(received, str):
        received = received.encode("utf-8", "surrogateescape")
    return hmac.compare_digest(expected.encode("ascii"), received)


def verify_payment_signature(
    order_id: str, payment_id: str, signature: Optional[str], secret: str
) -> bool:
    """
    Checkout signature: HMAC over "<order_id>|<payment_id>" with the API key secret.
    """
    if not secret:
        logger.error("Payment signature check requested but no key secret is configured")
        return False
    expected = compute_signature(f"{order_id}|{payment_id}", secret)
    return _matches(expected, signature)


def verify_webhook_signature(
    raw_body: bytes, signature: Optional[str], secret: str
) -> bool:
    """
    Webhook signature: HMAC over the raw request body with the webhook secret.
    Must run on the exact bytes received, before any JSON parsing.
    """
    if not secret:
        logger.error("Webhook received but no webhook secret is configured")
        return False
    expected = compute_signature(raw_body, secret)
    return _matches(expected, signature)
