from enum import Enum


class UserRole(str, Enum):
    STUDENT = "student"
    ADMIN = "admin"
    OWNER = "owner"


class SubscriptionType(str, Enum):
    FREE = "free"
    ONE_TIME = "one-time"
    SUBSCRIPTION = "subscription"


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    COMPLETED = "completed"


TERMINAL_STATUSES = (SubscriptionStatus.CANCELLED.value, SubscriptionStatus.COMPLETED.value)
