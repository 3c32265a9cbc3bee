"""
Models package initialization
Import all models and setup relationships
"""

from .course import Course, CourseEmiPlan
from .entitlement import CourseEntitlement
from .payment import Payment

# Import and setup relationships
from .relations import setup_relationships
from .subscription import Subscription
from .user import User

# Setup all relationships after models are imported
setup_relationships()

# Make models available at package level
__all__ = [
    "Course",
    "CourseEmiPlan",
    "CourseEntitlement",
    "Payment",
    "Subscription",
    "User",
]
