# app/routers/enrollment.py

from fastapi import APIRouter, Depends

from app.core.dependencies import (
    get_current_student,
    get_entitlement_engine,
    require_course_access,
)
from app.models.entitlement import CourseEntitlement
from app.models.user import User
from app.schemas.payment import EnrollmentResponse
from app.schemas.subscription import EntitlementCheckResponse
from app.services.entitlement_engine import EntitlementEngine
from app.utils.dt import as_utc_aware

router = APIRouter(
    prefix="/courses",
    tags=["Enrollment"],
    responses={404: {"description": "Not found"}},
)


@router.post("/{course_id}/enroll", response_model=EnrollmentResponse, status_code=201)
def enroll_free_course(
    course_id: int,
    current_user: User = Depends(get_current_student),
    engine: EntitlementEngine = Depends(get_entitlement_engine),
):
    """
    Enroll in a free course. Paid courses must go through /payment/initiate.
    """
    return engine.enroll_free(current_user, course_id)


@router.get("/{course_id}/access", response_model=EntitlementCheckResponse)
def get_course_access(
    course_id: int,
    entitlement: CourseEntitlement = Depends(require_course_access),
):
    """
    Succeeds only while the caller has active access to the course
    (admins always pass).
    """
    return {
        "course_id": course_id,
        "is_active": True,
        "expires_at": as_utc_aware(entitlement.expires_at) if entitlement else None,
    }
