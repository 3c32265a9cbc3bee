# app/routers/admin.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.core.dependencies import get_current_admin, get_entitlement_engine
from app.models.enums import SubscriptionStatus
from app.models.user import User
from app.schemas.payment import PaymentListResponse
from app.schemas.subscription import SubscriptionListResponse, SubscriptionResponse
from app.services.entitlement_engine import EntitlementEngine
from app.services.payment_log import PaymentLogService
from app.services.subscription_ledger import SubscriptionLedger

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    responses={404: {"description": "Not found"}},
)


@router.get("/subscriptions", response_model=SubscriptionListResponse)
def list_subscriptions(
    status: Optional[SubscriptionStatus] = Query(None, description="Filter by status"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    """All subscriptions, newest first."""
    subscriptions, pagination = SubscriptionLedger(db).list(
        status=status.value if status else None, page=page, size=size
    )
    return SubscriptionListResponse(subscriptions=subscriptions, **pagination)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: int,
    current_admin: User = Depends(get_current_admin),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    return engine.cancel_subscription(subscription_id, current_admin)


@router.get("/payments", response_model=PaymentListResponse)
def list_payments(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    payments, pagination = PaymentLogService(db).list(page=page, size=size)
    return PaymentListResponse(payments=payments, **pagination)


@router.get("/payments/student/{student_id}", response_model=PaymentListResponse)
def list_student_payments(
    student_id: int,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_admin: User = Depends(get_current_admin),
):
    """Payment history of a single student, newest first."""
    payments, pagination = PaymentLogService(db).list(
        user_id=student_id, page=page, size=size
    )
    return PaymentListResponse(payments=payments, **pagination)
