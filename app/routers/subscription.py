# app/routers/subscription.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import (
    get_current_student,
    get_current_user,
    get_entitlement_engine,
)
from app.models.user import User
from app.schemas.payment import PaymentListResponse
from app.schemas.subscription import (
    CourseAccessStatus,
    EntitlementCheckResponse,
    SubscriptionResponse,
)
from app.services.entitlement_engine import EntitlementEngine
from app.services.payment_log import PaymentLogService

router = APIRouter(
    tags=["Subscriptions"],
    responses={404: {"description": "Not found"}},
)


@router.get("/subscription/status", response_model=List[CourseAccessStatus])
def get_subscription_status(
    current_user: User = Depends(get_current_student),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    """Every course the caller has been granted, with its current status."""
    return engine.status(current_user)


@router.get("/entitlements/{course_id}", response_model=EntitlementCheckResponse)
def check_entitlement(
    course_id: int,
    current_user: User = Depends(get_current_user),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    return engine.check_access(current_user, course_id)


@router.get("/payments/history", response_model=PaymentListResponse)
def get_payment_history(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_student),
    db: Session = Depends(get_db),
):
    """The caller's settled payments, newest first."""
    payments, pagination = PaymentLogService(db).list(
        user_id=current_user.id, page=page, size=size
    )
    return PaymentListResponse(payments=payments, **pagination)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_own_subscription(
    subscription_id: int,
    current_user: User = Depends(get_current_student),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    """
    Cancel one of the caller's subscriptions. Access to the course ends
    immediately.
    """
    return engine.cancel_subscription(subscription_id, current_user)
