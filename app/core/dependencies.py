import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.database import get_db
from app.core.security import jwt_manager
from app.models.entitlement import CourseEntitlement
from app.models.enums import UserRole
from app.models.user import User
from app.services.entitlement import EntitlementService
from app.services.entitlement_engine import EntitlementEngine
from app.utils.dt import as_utc_aware
from app.utils.notifier import LogNotifier, Notifier, TelegramNotifier
from app.utils.payment_gateway import PaymentGateway, RazorpayGateway

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency that requires a valid Bearer token and returns the active user.
    Raises 401 Unauthorized if the token is missing, invalid, or the user is not found.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = jwt_manager.verify_token(credentials.credentials, "access")

    if "user_id" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: Not a valid user token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.id == payload.get("user_id")).first()

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user"
        )

    return user


async def get_current_student(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """
    Dependency for enrollment and payment routes: only students buy courses.
    """
    if current_user.role != UserRole.STUDENT.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Student access required"
        )
    return current_user


async def get_current_admin(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required"
        )
    return current_user


def require_course_access(
    course_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> CourseEntitlement:
    """
    Gate for course content routes with a `course_id` path parameter.
    Admins pass through without an entitlement row.

    Usage:
        @router.get("/courses/{course_id}/lessons")
        def lessons(entitlement = Depends(require_course_access)):
            ...
    """
    service = EntitlementService(db)
    entitlement = service.get(user.id, course_id)

    if user.is_admin:
        return entitlement

    if entitlement is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not enrolled in this course",
        )
    if as_utc_aware(entitlement.expires_at) <= datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your access to this course has expired",
        )
    return entitlement


# -----------------------
# External services
# -----------------------
@lru_cache()
def _razorpay_gateway() -> RazorpayGateway:
    return RazorpayGateway(
        key_id=settings.razorpay_key_id,
        key_secret=settings.razorpay_key_secret,
        timeout=settings.gateway_timeout_seconds,
    )


def get_payment_gateway() -> Optional[PaymentGateway]:
    """None when gateway credentials are not configured; paid flows then fail with 503."""
    if not settings.razorpay_key_id or not settings.razorpay_key_secret:
        return None
    return _razorpay_gateway()


@lru_cache()
def get_notifier() -> Notifier:
    if settings.telegram_notification_enabled and settings.telegram_bot_token:
        logger.info("Enrollment notifications go through Telegram")
        return TelegramNotifier(settings.telegram_bot_token)
    return LogNotifier()


def get_entitlement_engine(
    db: Session = Depends(get_db),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    notifier: Notifier = Depends(get_notifier),
) -> EntitlementEngine:
    return EntitlementEngine(db, gateway=gateway, notifier=notifier)
