# app/routers/payment.py
import logging
from typing import Optional, Union

from fastapi import APIRouter, Body, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool

from app.core.config import settings
from app.core.dependencies import get_current_student, get_entitlement_engine
from app.core.limiter import limiter
from app.models.user import User
from app.schemas.payment import (
    EmiInitiateRequest,
    EmiSubscriptionResponse,
    EnrollmentResponse,
    InitiatePaymentRequest,
    OrderResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAckResponse,
)
from app.services.entitlement_engine import EntitlementEngine

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/payment",
    tags=["Payments"],
    responses={404: {"description": "Not found"}},
)


@router.post(
    "/initiate",
    response_model=Union[OrderResponse, EmiSubscriptionResponse, EnrollmentResponse],
)
@limiter.limit(settings.rate_limit_payment)
def initiate_payment(
    request: Request,
    payload: InitiatePaymentRequest = Body(...),
    current_user: User = Depends(get_current_student),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    """
    Start an enrollment. `mode` selects the flow:
    - **free**: enroll directly in a zero-priced course
    - **one-time**: create a gateway order to pay in full
    - **emi**: start a monthly installment subscription
    """
    return engine.initiate(current_user, payload)


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify_payment(
    payload: VerifyPaymentRequest,
    current_user: User = Depends(get_current_student),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    """
    Confirm a one-time checkout using the signature returned by the gateway.
    Submitting the same payment twice is harmless.
    """
    return engine.verify_payment(current_user, payload)


@router.post("/create-subscription", response_model=EmiSubscriptionResponse)
@limiter.limit(settings.rate_limit_payment)
def create_subscription(
    request: Request,
    payload: EmiInitiateRequest,
    current_user: User = Depends(get_current_student),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    """Start an EMI subscription. Access is granted when the first installment is charged."""
    return engine.initiate_emi(current_user, payload)


@router.post("/webhook", response_model=WebhookAckResponse)
async def payment_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    """
    Gateway callback. The signature is checked against the raw body before
    anything is parsed.
    """
    raw_body = await request.body()
    status = await run_in_threadpool(engine.handle_webhook, raw_body, x_razorpay_signature)
    return {"status": status}
