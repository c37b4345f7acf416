"""
ENROLLMENT ROUTER
File: app/courses/enrollment_router.py

Enrollment is idempotent: asking to enroll twice returns the first record.
The (user_id, course_id) unique index backs this when requests race.
"""

from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.auth.auth_utils import UserContext, get_current_user
from app.courses.models import EnrollmentCreate
from app.courses import database as crud
from app.database import get_db

router = APIRouter(tags=["Enrollments"])


async def get_owned_enrollment(db: AsyncIOMotorDatabase, enrollment_id: str, user: UserContext) -> dict:
    enrollment = await crud.get_enrollment_by_id(db, enrollment_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    if enrollment["user_id"] != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not your enrollment")
    return enrollment


# ==================== ENROLLMENT ENDPOINTS ====================

@router.post("/enrollments")
async def enroll_endpoint(
    enrollment: EnrollmentCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """
    Enroll in course, or return the existing enrollment
    """
    course = await crud.require_course(db, enrollment.course_id)
    if not course.get("is_active", True):
        raise HTTPException(status_code=400, detail="Course not available for enrollment")

    record, created = await crud.enroll_user(db, course["course_id"], user.user_id)

    return {
        "success": True,
        "enrollment": record,
        "already_enrolled": not created,
        "message": "Enrolled successfully" if created else "Already enrolled in this course"
    }


@router.get("/enrollments/me")
async def get_my_enrollments(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Get all enrolled courses for user"""
    enrollments = await crud.get_user_enrollments(db, user.user_id)

    # Enrich with course data
    result = []
    for enr in enrollments:
        course = await crud.get_course(db, enr["course_id"])
        if course:
            result.append({
                **enr,
                "course": {
                    "course_id": course["course_id"],
                    "title": course["title"],
                    "description": course["description"],
                    "category": course["category"],
                    "image": course.get("image"),
                    "total_lessons": course.get("total_lessons", 0)
                }
            })

    return {
        "enrollments": result,
        "count": len(result)
    }


@router.get("/enrollments/{enrollment_id}")
async def get_enrollment_endpoint(
    enrollment_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Enrollment with the course outline, as the learning page needs it"""
    enrollment = await get_owned_enrollment(db, enrollment_id, user)
    course = await crud.get_course_with_details(db, enrollment["course_id"])
    return {**enrollment, "course": course}


@router.get("/courses/{course_id}/enrollment")
async def get_course_enrollment(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    enrollment = await crud.get_enrollment(db, course_id, user.user_id)
    if not enrollment:
        raise HTTPException(status_code=404, detail="Not enrolled in this course")
    return enrollment


@router.post("/enrollments/{enrollment_id}/lessons/{lesson_id}/complete")
async def complete_lesson_endpoint(
    enrollment_id: str,
    lesson_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Mark lesson as completed (permanent)"""
    enrollment = await get_owned_enrollment(db, enrollment_id, user)
    return await crud.complete_lesson(db, enrollment, lesson_id)
