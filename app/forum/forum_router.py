from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.auth.auth_utils import UserContext, get_current_user, require_role
from app.database import get_db
from app.forum.forum_models import (
    ClassCreate, ClassUpdate, MemberAdd, ClassCourseAdd, PostCreate, PostUpdate
)
from app.forum.forum_permissions import verify_class_ownership, verify_class_access
from app.forum import forum_service as service

router = APIRouter(prefix="/forum", tags=["Forum Classes"])

# ==================== CLASS MANAGEMENT ====================

@router.get("/classes")
async def list_my_teaching_classes(
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    """Classes owned by the calling teacher, with counts"""
    return await service.get_teacher_classes(db, teacher.user_id)

@router.post("/classes", status_code=201)
async def create_class(
    data: ClassCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher"))
):
    return await service.create_class(db, teacher, data.dict())

@router.get("/my-classes")
async def my_classes(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Classes the caller has joined as a student"""
    return await service.get_my_classes_with_details(db, user.user_id)

@router.get("/classes/{class_id}")
async def get_class_detail(
    class_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await verify_class_access(db, class_id, user)
    return await service.get_class_with_details(db, class_id)

@router.patch("/classes/{class_id}")
async def update_class(
    class_id: str,
    data: ClassUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    await verify_class_ownership(db, class_id, teacher)
    return await service.update_class(db, class_id, data.dict(exclude_none=True))

@router.delete("/classes/{class_id}")
async def delete_class(
    class_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    await verify_class_ownership(db, class_id, teacher)
    await service.delete_class(db, class_id)
    return {"success": True, "message": "Class deleted"}

# ==================== MEMBERS ====================

@router.get("/classes/{class_id}/members")
async def list_members(
    class_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await verify_class_access(db, class_id, user)
    return await service.get_class_members(db, class_id)

@router.post("/classes/{class_id}/members", status_code=201)
async def add_member(
    class_id: str,
    data: MemberAdd,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    """Add a student by email"""
    forum_class = await verify_class_ownership(db, class_id, teacher)
    return await service.add_member_by_email(db, forum_class, data.email)

@router.delete("/members/{member_id}")
async def remove_member(
    member_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    member = await service.get_member(db, member_id)
    await verify_class_ownership(db, member["class_id"], teacher)
    await service.remove_member(db, member_id)
    return {"success": True, "message": "Member removed"}

# ==================== CLASS COURSES ====================

@router.get("/classes/{class_id}/courses")
async def list_class_courses(
    class_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await verify_class_access(db, class_id, user)
    return await service.get_class_courses(db, class_id)

@router.post("/classes/{class_id}/courses", status_code=201)
async def add_class_course(
    class_id: str,
    data: ClassCourseAdd,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    await verify_class_ownership(db, class_id, teacher)
    return await service.add_course_to_class(db, class_id, data.course_id, teacher.user_id)

@router.delete("/courses/{link_id}")
async def remove_class_course(
    link_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    link = await service.get_class_course_link(db, link_id)
    await verify_class_ownership(db, link["class_id"], teacher)
    await service.remove_course_from_class(db, link_id)
    return {"success": True, "message": "Course removed from class"}

# ==================== POSTS ====================

@router.get("/classes/{class_id}/posts")
async def list_posts(
    class_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await verify_class_access(db, class_id, user)
    return await service.get_posts(db, class_id)

@router.post("/classes/{class_id}/posts", status_code=201)
async def create_post(
    class_id: str,
    data: PostCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    forum_class = await verify_class_access(db, class_id, user)
    if not forum_class.get("is_active", True):
        raise HTTPException(status_code=400, detail="Class is archived")
    return await service.create_post(db, class_id, user, data.dict())

@router.patch("/posts/{post_id}")
async def update_post(
    post_id: str,
    data: PostUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    post = await service.get_post(db, post_id)
    await service.verify_post_editor(db, post, user)
    return await service.update_post(db, post_id, data.dict(exclude_none=True))

@router.delete("/posts/{post_id}")
async def delete_post(
    post_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    post = await service.get_post(db, post_id)
    await service.verify_post_editor(db, post, user)
    await service.delete_post(db, post_id)
    return {"success": True, "message": "Post deleted"}
