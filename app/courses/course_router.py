from fastapi import APIRouter, HTTPException, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from app.auth.auth_utils import UserContext, require_role
from app.courses.models import (
    CourseCreate, CourseUpdate, ChapterCreate, ChapterUpdate, LessonCreate, LessonUpdate
)
from app.courses import database as crud
from app.database import get_db

router = APIRouter(tags=["Courses"])

# ==================== COURSES ====================

@router.get("/courses")
async def list_courses_endpoint(
    category: Optional[str] = None,
    teacher_id: Optional[str] = None,
    q: Optional[str] = None,
    is_active: Optional[bool] = None,
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Course catalog with optional filters"""
    return await crud.list_courses(db, {
        "category": category,
        "teacher_id": teacher_id,
        "q": q,
        "is_active": is_active
    })

@router.post("/courses", status_code=201)
async def create_course_endpoint(
    course: CourseCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    """
    Create course with optional nested chapters and lessons.
    Teachers always own what they create; admins may assign a teacher.
    """
    data = course.dict()
    teacher_id = user.user_id
    if user.is_admin and data.get("teacher_id"):
        teacher = await db.users.find_one({"user_id": data["teacher_id"], "role": "teacher"})
        if not teacher:
            raise HTTPException(status_code=400, detail="teacher_id must reference a teacher")
        teacher_id = data["teacher_id"]

    return await crud.create_course(db, data, teacher_id)

@router.get("/courses/{course_id}")
async def get_course_endpoint(course_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Course with chapters, lessons and teacher profile"""
    return await crud.get_course_with_details(db, course_id)

@router.patch("/courses/{course_id}")
async def update_course_endpoint(
    course_id: str,
    updates: CourseUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    course = await crud.require_course(db, course_id)
    crud.verify_course_owner(course, user)
    return await crud.update_course(db, course_id, updates.dict(exclude_none=True))

@router.delete("/courses/{course_id}")
async def delete_course_endpoint(
    course_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    course = await crud.require_course(db, course_id)
    crud.verify_course_owner(course, user)
    await crud.delete_course(db, course_id)
    return {"success": True, "message": "Course deleted"}

@router.get("/teachers/{teacher_id}/courses")
async def teacher_courses(teacher_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await crud.list_courses(db, {"teacher_id": teacher_id})

# ==================== CHAPTERS ====================

@router.get("/courses/{course_id}/chapters")
async def list_chapters_endpoint(course_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    await crud.require_course(db, course_id)
    return await crud.list_chapters(db, course_id)

@router.post("/chapters", status_code=201)
async def create_chapter_endpoint(
    chapter: ChapterCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    course = await crud.require_course(db, chapter.course_id)
    crud.verify_course_owner(course, user)
    return await crud.create_chapter(db, chapter.dict())

@router.get("/chapters/{chapter_id}")
async def get_chapter_endpoint(chapter_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Chapter with its lessons"""
    chapter = await crud.require_chapter(db, chapter_id)
    return {**chapter, "lessons": await crud.list_lessons(db, chapter_id)}

@router.patch("/chapters/{chapter_id}")
async def update_chapter_endpoint(
    chapter_id: str,
    updates: ChapterUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    chapter = await crud.require_chapter(db, chapter_id)
    crud.verify_course_owner(await crud.require_course(db, chapter["course_id"]), user)
    return await crud.update_chapter(db, chapter_id, updates.dict(exclude_none=True))

@router.delete("/chapters/{chapter_id}")
async def delete_chapter_endpoint(
    chapter_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    chapter = await crud.require_chapter(db, chapter_id)
    crud.verify_course_owner(await crud.require_course(db, chapter["course_id"]), user)
    await crud.delete_chapter(db, chapter)
    return {"success": True, "message": "Chapter deleted"}

# ==================== LESSONS ====================

@router.get("/chapters/{chapter_id}/lessons")
async def list_lessons_endpoint(chapter_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    await crud.require_chapter(db, chapter_id)
    return await crud.list_lessons(db, chapter_id)

@router.get("/lessons/{lesson_id}")
async def get_lesson_endpoint(lesson_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    lesson = await crud.get_lesson(db, lesson_id)
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")
    return lesson

@router.post("/lessons", status_code=201)
async def create_lesson_endpoint(
    lesson: LessonCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    chapter = await crud.require_chapter(db, lesson.chapter_id)
    crud.verify_course_owner(await crud.require_course(db, chapter["course_id"]), user)
    return await crud.create_lesson(db, lesson.dict())

@router.patch("/lessons/{lesson_id}")
async def update_lesson_endpoint(
    lesson_id: str,
    updates: LessonUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    lesson = await crud.get_lesson(db, lesson_id)
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")
    crud.verify_course_owner(await crud.require_course(db, lesson["course_id"]), user)
    return await crud.update_lesson(db, lesson_id, updates.dict(exclude_none=True))

@router.delete("/lessons/{lesson_id}")
async def delete_lesson_endpoint(
    lesson_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    lesson = await crud.get_lesson(db, lesson_id)
    if not lesson:
        raise HTTPException(status_code=404, detail="Lesson not found")
    crud.verify_course_owner(await crud.require_course(db, lesson["course_id"]), user)
    await crud.delete_lesson(db, lesson)
    return {"success": True, "message": "Lesson deleted"}
