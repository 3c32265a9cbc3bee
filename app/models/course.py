# app/models/course.py
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.sql import func

from app.core.database import Base


class Course(Base):
    __tablename__ = "courses"

    id = Column(Integer, primary_key=True, index=True)

    # Basic Info
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)

    # Pricing (currency units, e.g. rupees)
    price = Column(Numeric(10, 2), nullable=False, default=0.00)

    # Access length granted by an enrollment
    duration_in_days = Column(Integer, nullable=False, default=365)

    # Payment options
    allow_full_payment = Column(Boolean, default=True, nullable=False)
    allow_emi = Column(Boolean, default=False, nullable=False)

    # Timestamps
    created_at = Column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    @property
    def is_free(self) -> bool:
        return not self.price

    def __repr__(self):
        return f"<Course(id={self.id}, name='{self.name}', price={self.price})>"


class CourseEmiPlan(Base):
    """
    Installment template offered for a course, e.g. "6 months EMI".
    """

    __tablename__ = "course_emi_plans"

    id = Column(Integer, primary_key=True, index=True)
    course_id = Column(
        Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True
    )

    name = Column(String(100), nullable=True)
    installments = Column(Integer, nullable=False)
    interest_percent = Column(Numeric(5, 2), nullable=False, default=0)
    per_installment_amount = Column(Numeric(10, 2), nullable=True)  # INR
    total_amount = Column(Numeric(10, 2), nullable=True)  # INR, may include interest

    # Gateway plan reused when its amount still matches
    gateway_plan_id = Column(String(64), nullable=True)

    def __repr__(self):
        return f"<CourseEmiPlan(id={self.id}, course_id={self.course_id}, installments={self.installments})>"
