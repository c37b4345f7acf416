import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.auth.auth_utils import UserContext
from app.auth.user_service import get_user, public_user
from app.config import LESSON_COMPLETION_POINTS
from app.courses.models import EnrollmentStatus
from app.database import generate_id, serialize_doc, serialize_many
from app.gamification.points import award_points, record_activity

logger = logging.getLogger(__name__)

# ==================== COURSE CRUD ====================

async def create_course(db: AsyncIOMotorDatabase, course_data: dict, teacher_id: str) -> dict:
    """
    Create course, optionally with nested chapters and lessons
    """
    course_id = generate_id("CRS")
    chapters = course_data.pop("chapters", [])
    price = course_data.get("price", 0)

    course = {
        "course_id": course_id,
        "title": course_data["title"],
        "description": course_data.get("description", ""),
        "category": course_data["category"],
        "level": course_data.get("level"),
        "duration": course_data.get("duration"),
        "price": price,
        "original_price": course_data.get("original_price") or price,
        "image": course_data.get("image"),
        "teacher_id": teacher_id,
        "students": 0,
        "rating": 0.0,
        "total_lessons": 0,
        "is_active": course_data.get("is_active", True),
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    await db.courses.insert_one(course)

    for chapter in chapters:
        lessons = chapter.pop("lessons", [])
        chapter_doc = await create_chapter(db, {**chapter, "course_id": course_id})
        for lesson in lessons:
            await create_lesson(db, {**lesson, "chapter_id": chapter_doc["chapter_id"]}, refresh=False)

    await refresh_total_lessons(db, course_id)
    logger.info("Course %s created by %s with %d chapters", course_id, teacher_id, len(chapters))
    return await get_course(db, course_id)

async def get_course(db: AsyncIOMotorDatabase, course_id: str) -> Optional[dict]:
    """Get course by ID"""
    return serialize_doc(await db.courses.find_one({"course_id": course_id}))

async def require_course(db: AsyncIOMotorDatabase, course_id: str) -> dict:
    course = await get_course(db, course_id)
    if not course:
        raise HTTPException(status_code=404, detail="Course not found")
    return course

def verify_course_owner(course: dict, user: UserContext):
    """Only the owning teacher or an admin may change a course"""
    if user.is_admin:
        return
    if not user.is_teacher or course.get("teacher_id") != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized to modify this course")

async def list_courses(db: AsyncIOMotorDatabase, filters: dict) -> List[dict]:
    """List courses with filters"""
    query = {}
    if filters.get("category"):
        query["category"] = filters["category"]
    if filters.get("teacher_id"):
        query["teacher_id"] = filters["teacher_id"]
    if filters.get("is_active") is not None:
        query["is_active"] = filters["is_active"]
    if filters.get("q"):
        query["title"] = {"$regex": re.escape(filters["q"]), "$options": "i"}

    cursor = db.courses.find(query).sort("created_at", -1)
    return serialize_many(await cursor.to_list(length=None))

async def update_course(db: AsyncIOMotorDatabase, course_id: str, updates: dict) -> dict:
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.courses.update_one({"course_id": course_id}, {"$set": updates})
    return await get_course(db, course_id)

async def delete_course(db: AsyncIOMotorDatabase, course_id: str):
    """Delete course and everything hanging off it"""
    await db.courses.delete_one({"course_id": course_id})
    await db.chapters.delete_many({"course_id": course_id})
    await db.lessons.delete_many({"course_id": course_id})
    await db.enrollments.delete_many({"course_id": course_id})
    await db.cart_items.delete_many({"course_id": course_id})
    await db.forum_courses.delete_many({"course_id": course_id})
    logger.info("Course %s deleted", course_id)

async def get_course_with_details(db: AsyncIOMotorDatabase, course_id: str) -> dict:
    """Course joined with its ordered chapters, their lessons and the teacher"""
    course = await require_course(db, course_id)
    chapters = await list_chapters(db, course_id)

    lessons = await db.lessons.find({"course_id": course_id}).sort("order", 1).to_list(length=None)
    by_chapter = {}
    for lesson in serialize_many(lessons):
        by_chapter.setdefault(lesson["chapter_id"], []).append(lesson)

    for chapter in chapters:
        chapter["lessons"] = by_chapter.get(chapter["chapter_id"], [])

    teacher = await get_user(db, course["teacher_id"]) if course.get("teacher_id") else None
    return {
        **course,
        "chapters": chapters,
        "teacher": public_user(teacher)
    }

# ==================== CHAPTER CRUD ====================

async def create_chapter(db: AsyncIOMotorDatabase, data: dict) -> dict:
    chapter = {
        "chapter_id": generate_id("CHP"),
        "course_id": data["course_id"],
        "title": data["title"],
        "description": data.get("description"),
        "order": data.get("order", 1),
        "created_at": datetime.utcnow()
    }
    await db.chapters.insert_one(chapter)
    return serialize_doc(chapter)

async def get_chapter(db: AsyncIOMotorDatabase, chapter_id: str) -> Optional[dict]:
    return serialize_doc(await db.chapters.find_one({"chapter_id": chapter_id}))

async def require_chapter(db: AsyncIOMotorDatabase, chapter_id: str) -> dict:
    chapter = await get_chapter(db, chapter_id)
    if not chapter:
        raise HTTPException(status_code=404, detail="Chapter not found")
    return chapter

async def list_chapters(db: AsyncIOMotorDatabase, course_id: str) -> List[dict]:
    cursor = db.chapters.find({"course_id": course_id}).sort("order", 1)
    return serialize_many(await cursor.to_list(length=None))

async def update_chapter(db: AsyncIOMotorDatabase, chapter_id: str, updates: dict) -> dict:
    if updates:
        await db.chapters.update_one({"chapter_id": chapter_id}, {"$set": updates})
    return await get_chapter(db, chapter_id)

async def delete_chapter(db: AsyncIOMotorDatabase, chapter: dict):
    await db.chapters.delete_one({"chapter_id": chapter["chapter_id"]})
    await db.lessons.delete_many({"chapter_id": chapter["chapter_id"]})
    await refresh_total_lessons(db, chapter["course_id"])

# ==================== LESSON CRUD ====================

async def create_lesson(db: AsyncIOMotorDatabase, data: dict, refresh: bool = True) -> dict:
    chapter = await require_chapter(db, data["chapter_id"])

    lesson = {
        "lesson_id": generate_id("LSN"),
        "chapter_id": chapter["chapter_id"],
        "course_id": chapter["course_id"],
        "title": data["title"],
        "content": data.get("content") or f"Lesson content: {data['title']}",
        "video_url": data.get("video_url", ""),
        "duration": data.get("duration"),
        "order": data.get("order", 1),
        "is_free": data.get("is_free", False),
        "type": data.get("type", "video"),
        "created_at": datetime.utcnow()
    }
    await db.lessons.insert_one(lesson)

    if refresh:
        await refresh_total_lessons(db, chapter["course_id"])
    return serialize_doc(lesson)

async def get_lesson(db: AsyncIOMotorDatabase, lesson_id: str) -> Optional[dict]:
    return serialize_doc(await db.lessons.find_one({"lesson_id": lesson_id}))

async def list_lessons(db: AsyncIOMotorDatabase, chapter_id: str) -> List[dict]:
    cursor = db.lessons.find({"chapter_id": chapter_id}).sort("order", 1)
    return serialize_many(await cursor.to_list(length=None))

async def update_lesson(db: AsyncIOMotorDatabase, lesson_id: str, updates: dict) -> dict:
    if updates:
        await db.lessons.update_one({"lesson_id": lesson_id}, {"$set": updates})
    return await get_lesson(db, lesson_id)

async def delete_lesson(db: AsyncIOMotorDatabase, lesson: dict):
    await db.lessons.delete_one({"lesson_id": lesson["lesson_id"]})
    await db.enrollments.update_many(
        {"course_id": lesson["course_id"]},
        {"$pull": {"completed_lessons": lesson["lesson_id"]}}
    )
    await refresh_total_lessons(db, lesson["course_id"])

async def refresh_total_lessons(db: AsyncIOMotorDatabase, course_id: str) -> int:
    """Keep course.total_lessons in line with the stored lessons"""
    total = await db.lessons.count_documents({"course_id": course_id})
    await db.courses.update_one({"course_id": course_id}, {"$set": {"total_lessons": total}})
    return total

# ==================== ENROLLMENT CRUD ====================

async def enroll_user(db: AsyncIOMotorDatabase, course_id: str, user_id: str) -> Tuple[dict, bool]:
    """
    Enroll user in course.
    Returns (enrollment, created); an existing enrollment is returned as is.
    """
    existing = await get_enrollment(db, course_id, user_id)
    if existing:
        return existing, False

    enrollment = {
        "enrollment_id": generate_id("ENR"),
        "course_id": course_id,
        "user_id": user_id,
        "progress": 0,
        "completed_lessons": [],
        "status": EnrollmentStatus.ACTIVE.value,
        "enrolled_at": datetime.utcnow(),
        "completed_at": None
    }

    try:
        await db.enrollments.insert_one(enrollment)
    except DuplicateKeyError:
        # Lost the race to a concurrent request for the same pair
        return await get_enrollment(db, course_id, user_id), False

    await db.courses.update_one({"course_id": course_id}, {"$inc": {"students": 1}})
    logger.info("User %s enrolled in %s", user_id, course_id)
    return serialize_doc(enrollment), True

async def get_enrollment(db: AsyncIOMotorDatabase, course_id: str, user_id: str) -> Optional[dict]:
    """Get user enrollment"""
    return serialize_doc(await db.enrollments.find_one({
        "course_id": course_id,
        "user_id": user_id
    }))

async def get_enrollment_by_id(db: AsyncIOMotorDatabase, enrollment_id: str) -> Optional[dict]:
    return serialize_doc(await db.enrollments.find_one({"enrollment_id": enrollment_id}))

async def get_user_enrollments(db: AsyncIOMotorDatabase, user_id: str) -> List[dict]:
    """Get all enrollments for user"""
    cursor = db.enrollments.find({"user_id": user_id}).sort("enrolled_at", -1)
    return serialize_many(await cursor.to_list(length=None))

def calculate_progress(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, round(100 * completed / total))

async def complete_lesson(db: AsyncIOMotorDatabase, enrollment: dict, lesson_id: str) -> dict:
    """
    Mark a lesson complete for an enrollment and recompute progress.
    Repeating a completed lesson changes nothing and awards nothing.
    """
    lesson = await get_lesson(db, lesson_id)
    if not lesson or lesson["course_id"] != enrollment["course_id"]:
        raise HTTPException(status_code=404, detail="Lesson not found in this course")

    if lesson_id in enrollment.get("completed_lessons", []):
        return {**enrollment, "newly_completed": False}

    result = await db.enrollments.update_one(
        {"enrollment_id": enrollment["enrollment_id"], "completed_lessons": {"$ne": lesson_id}},
        {"$addToSet": {"completed_lessons": lesson_id}}
    )
    if result.modified_count == 0:
        current = await get_enrollment_by_id(db, enrollment["enrollment_id"])
        return {**current, "newly_completed": False}

    updated = await get_enrollment_by_id(db, enrollment["enrollment_id"])
    total = await db.lessons.count_documents({"course_id": enrollment["course_id"]})
    progress = calculate_progress(len(updated["completed_lessons"]), total)

    updates = {"progress": progress}
    if progress >= 100 and updated.get("status") != EnrollmentStatus.COMPLETED.value:
        updates["status"] = EnrollmentStatus.COMPLETED.value
        updates["completed_at"] = datetime.utcnow()
        logger.info("User %s completed course %s", enrollment["user_id"], enrollment["course_id"])

    await db.enrollments.update_one({"enrollment_id": enrollment["enrollment_id"]}, {"$set": updates})

    await award_points(db, enrollment["user_id"], LESSON_COMPLETION_POINTS, "lesson_completed", lesson_id)
    await record_activity(db, enrollment["user_id"])

    updated.update(updates)
    return {**updated, "newly_completed": True}
