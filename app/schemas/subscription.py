# app/schemas/subscription.py

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.payment import CourseInPaymentResponse, UserInPaymentResponse


class PaymentHistoryEntry(BaseModel):
    payment_id: str
    order_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "INR"
    status: str = "captured"
    paid_at: Optional[datetime] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionResponse(BaseModel):
    id: int
    user_id: int
    course_id: int
    type: str
    status: str
    amount: Optional[Decimal]
    currency: str
    gateway_order_id: Optional[str]
    gateway_subscription_id: Optional[str]
    gateway_plan_id: Optional[str]
    total_count: Optional[int]
    paid_count: int
    next_payment_at: Optional[datetime]
    expires_at: Optional[datetime]
    lifetime_access: bool
    payment_history: List[PaymentHistoryEntry] = []
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime

    course: Optional[CourseInPaymentResponse] = None
    user: Optional[UserInPaymentResponse] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionListResponse(BaseModel):
    subscriptions: list[SubscriptionResponse]
    total: int
    page: int
    size: int
    total_pages: int


# ==================== Access Status ====================


class CourseAccessStatus(BaseModel):
    course_id: int
    course_title: Optional[str]
    status: str = Field(..., examples=["active", "expired"])
    subscribed_at: datetime
    expires_at: datetime


class EntitlementCheckResponse(BaseModel):
    course_id: int
    is_active: bool
    expires_at: Optional[datetime] = None
