# app/models/relations.py

from sqlalchemy.orm import relationship

from .course import Course, CourseEmiPlan
from .entitlement import CourseEntitlement
from .payment import Payment
from .subscription import Subscription
from .user import User


def setup_relationships():
    """
    Configure all SQLAlchemy relationships between models.
    """

    # --- Course Relationships ---

    # 1. Course to EMI plan templates (One-to-Many)
    Course.emi_plans = relationship(
        "CourseEmiPlan",
        back_populates="course",
        cascade="all, delete-orphan",
        order_by="CourseEmiPlan.installments",
    )
    CourseEmiPlan.course = relationship("Course", back_populates="emi_plans")

    # --- Entitlement Relationships ---

    # 2. User to Entitlements (One-to-Many)
    User.entitlements = relationship(
        "CourseEntitlement",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    CourseEntitlement.user = relationship("User", back_populates="entitlements")
    CourseEntitlement.course = relationship("Course")

    # --- Subscription & Payment Relationships ---

    # 3. User to Subscriptions (One-to-Many); rows are never deleted
    User.subscriptions = relationship("Subscription", back_populates="user")
    Subscription.user = relationship("User", back_populates="subscriptions")
    Subscription.course = relationship("Course")

    # 4. Subscription to Payments (One-to-Many)
    Subscription.payments = relationship(
        "Payment",
        back_populates="subscription",
        order_by="Payment.created_at",
    )
    Payment.subscription = relationship("Subscription", back_populates="payments")
    Payment.user = relationship("User")
    Payment.course = relationship("Course")
