# app/schemas/payment.py

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

# ==================== Initiation Requests ====================
# The client states the payment mode explicitly; the router hands the engine
# one of these three variants.


class FreeEnrollRequest(BaseModel):
    mode: Literal["free"] = "free"
    course_id: int = Field(..., description="Course ID", examples=[42])


class OneTimeInitiateRequest(BaseModel):
    mode: Literal["one-time"] = "one-time"
    course_id: int = Field(..., description="Course ID", examples=[42])


class EmiInitiateRequest(BaseModel):
    mode: Literal["emi"] = "emi"
    course_id: int = Field(..., description="Course ID", examples=[42])
    emi_plan_id: Optional[int] = Field(
        None, description="Installment template configured on the course"
    )
    plan_id: Optional[str] = Field(
        None, description="Existing gateway plan to reuse when its amount matches"
    )
    total_count: Optional[int] = Field(
        None, ge=1, le=60, description="Number of monthly installments (default 6)"
    )


InitiatePaymentRequest = Annotated[
    Union[FreeEnrollRequest, OneTimeInitiateRequest, EmiInitiateRequest],
    Field(discriminator="mode"),
]


class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1, examples=["order_LxY7"])
    razorpay_payment_id: str = Field(..., min_length=1, examples=["pay_LxZ9"])
    razorpay_signature: str = Field(..., min_length=1)
    course_id: int = Field(..., examples=[42])


# ==================== Initiation Responses ====================


class EnrollmentResponse(BaseModel):
    message: str
    course_id: int
    expires_at: datetime
    subscription_id: Optional[int] = None


class OrderResponse(BaseModel):
    order_id: str
    amount: int = Field(..., description="Amount in minor units (paise)")
    currency: str
    course_title: str
    key_id: str
    subscription_id: int


class EmiSubscriptionResponse(BaseModel):
    subscription_id: str = Field(..., description="Gateway recurring subscription id")
    key_id: str
    plan_id: str
    total_count: int
    per_installment_amount: int = Field(..., description="Minor units per installment")
    status: str
    next_payment_at: Optional[datetime] = None
    local_subscription_id: int


class VerifyPaymentResponse(BaseModel):
    message: str
    course_id: int
    payment_id: str
    expires_at: datetime
    lifetime_access: bool
    subscription_id: Optional[int] = None
    already_processed: bool = False


class WebhookAckResponse(BaseModel):
    status: str


# ==================== Payment Log ====================


class CourseInPaymentResponse(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class UserInPaymentResponse(BaseModel):
    id: int
    email: str
    full_name: str

    model_config = ConfigDict(from_attributes=True)


class PaymentResponse(BaseModel):
    id: int
    user_id: int
    course_id: int
    subscription_id: Optional[int]
    gateway_order_id: Optional[str]
    gateway_payment_id: str
    amount: Decimal
    currency: str
    created_at: datetime

    course: Optional[CourseInPaymentResponse] = None
    user: Optional[UserInPaymentResponse] = None

    model_config = ConfigDict(from_attributes=True)


class PaymentListResponse(BaseModel):
    payments: list[PaymentResponse]
    total: int
    page: int
    size: int
    total_pages: int
