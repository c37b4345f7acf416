import logging
from datetime import datetime
from typing import List

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.auth.auth_utils import UserContext
from app.auth.user_service import get_public_users, get_user, public_user
from app.courses import database as course_crud
from app.database import generate_id, serialize_doc, serialize_many
from app.forum.forum_permissions import get_forum_class, is_class_member

logger = logging.getLogger(__name__)

# ==================== CLASS MANAGEMENT ====================

async def create_class(db: AsyncIOMotorDatabase, teacher: UserContext, data: dict) -> dict:
    forum_class = {
        "class_id": generate_id("CLS"),
        "teacher_id": teacher.user_id,
        "name": data["name"],
        "description": data.get("description"),
        "subject": data.get("subject"),
        "is_active": True,
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    await db.forum_classes.insert_one(forum_class)
    logger.info("Class %s created by %s", forum_class["class_id"], teacher.user_id)
    return await get_class_with_stats(db, forum_class["class_id"])

async def get_class_with_stats(db: AsyncIOMotorDatabase, class_id: str) -> dict:
    """Class with member, course and post counts"""
    forum_class = await get_forum_class(db, class_id)

    forum_class["member_count"] = await db.forum_members.count_documents({"class_id": class_id})
    forum_class["course_count"] = await db.forum_courses.count_documents({"class_id": class_id})
    forum_class["post_count"] = await db.forum_posts.count_documents({"class_id": class_id})
    return forum_class

async def get_teacher_classes(db: AsyncIOMotorDatabase, teacher_id: str) -> List[dict]:
    cursor = db.forum_classes.find({"teacher_id": teacher_id}).sort("created_at", -1)
    classes = await cursor.to_list(length=None)
    return [await get_class_with_stats(db, c["class_id"]) for c in classes]

async def update_class(db: AsyncIOMotorDatabase, class_id: str, updates: dict) -> dict:
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.forum_classes.update_one({"class_id": class_id}, {"$set": updates})
    return await get_class_with_stats(db, class_id)

async def delete_class(db: AsyncIOMotorDatabase, class_id: str):
    await db.forum_classes.delete_one({"class_id": class_id})
    await db.forum_members.delete_many({"class_id": class_id})
    await db.forum_courses.delete_many({"class_id": class_id})
    await db.forum_posts.delete_many({"class_id": class_id})
    await db.class_exams.delete_many({"class_id": class_id})
    logger.info("Class %s deleted", class_id)

# ==================== MEMBERS ====================

async def get_class_members(db: AsyncIOMotorDatabase, class_id: str) -> List[dict]:
    """Members joined with their public profile"""
    cursor = db.forum_members.find({"class_id": class_id}).sort("joined_at", 1)
    members = serialize_many(await cursor.to_list(length=None))

    users = await get_public_users(db, [m["user_id"] for m in members])
    for member in members:
        member["user"] = users.get(member["user_id"])
    return members

async def add_member_by_email(db: AsyncIOMotorDatabase, forum_class: dict, email: str) -> dict:
    """Only student accounts can join; teachers and admins read as not found"""
    user = await db.users.find_one({"email": email.lower(), "role": "student"})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if await is_class_member(db, forum_class["class_id"], user["user_id"]):
        raise HTTPException(status_code=409, detail="User is already a member of this class")

    member = {
        "member_id": generate_id("MEM"),
        "class_id": forum_class["class_id"],
        "user_id": user["user_id"],
        "role": "student",
        "joined_at": datetime.utcnow()
    }
    try:
        await db.forum_members.insert_one(member)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="User is already a member of this class")

    logger.info("User %s joined class %s", user["user_id"], forum_class["class_id"])
    return {**serialize_doc(member), "user": public_user(user)}

async def get_member(db: AsyncIOMotorDatabase, member_id: str) -> dict:
    member = await db.forum_members.find_one({"member_id": member_id})
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return serialize_doc(member)

async def remove_member(db: AsyncIOMotorDatabase, member_id: str):
    await db.forum_members.delete_one({"member_id": member_id})

# ==================== CLASS COURSES ====================

async def get_class_courses(db: AsyncIOMotorDatabase, class_id: str) -> List[dict]:
    cursor = db.forum_courses.find({"class_id": class_id}).sort("added_at", 1)
    links = serialize_many(await cursor.to_list(length=None))

    for link in links:
        link["course"] = await course_crud.get_course(db, link["course_id"])
    return [link for link in links if link["course"]]

async def add_course_to_class(db: AsyncIOMotorDatabase, class_id: str, course_id: str, teacher_id: str) -> dict:
    course = await course_crud.require_course(db, course_id)

    if await db.forum_courses.find_one({"class_id": class_id, "course_id": course_id}):
        raise HTTPException(status_code=409, detail="Course already added to this class")

    link = {
        "link_id": generate_id("FCR"),
        "class_id": class_id,
        "course_id": course_id,
        "added_by": teacher_id,
        "added_at": datetime.utcnow()
    }
    try:
        await db.forum_courses.insert_one(link)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Course already added to this class")

    return {**serialize_doc(link), "course": course}

async def get_class_course_link(db: AsyncIOMotorDatabase, link_id: str) -> dict:
    link = await db.forum_courses.find_one({"link_id": link_id})
    if not link:
        raise HTTPException(status_code=404, detail="Class course not found")
    return serialize_doc(link)

async def remove_course_from_class(db: AsyncIOMotorDatabase, link_id: str):
    await db.forum_courses.delete_one({"link_id": link_id})

# ==================== POSTS ====================

async def get_posts(db: AsyncIOMotorDatabase, class_id: str) -> List[dict]:
    """Posts newest first, each with its author"""
    cursor = db.forum_posts.find({"class_id": class_id}).sort("created_at", -1)
    posts = serialize_many(await cursor.to_list(length=None))

    authors = await get_public_users(db, [p["user_id"] for p in posts])
    for post in posts:
        post["author"] = authors.get(post["user_id"])
    return posts

async def create_post(db: AsyncIOMotorDatabase, class_id: str, user: UserContext, data: dict) -> dict:
    post = {
        "post_id": generate_id("PST"),
        "class_id": class_id,
        "user_id": user.user_id,
        "title": data.get("title"),
        "content": data["content"],
        "is_edited": False,
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    await db.forum_posts.insert_one(post)
    return {**serialize_doc(post), "author": public_user(user.profile)}

async def get_post(db: AsyncIOMotorDatabase, post_id: str) -> dict:
    post = await db.forum_posts.find_one({"post_id": post_id})
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return serialize_doc(post)

async def verify_post_editor(db: AsyncIOMotorDatabase, post: dict, user: UserContext):
    """Author, owning teacher or admin"""
    if user.is_admin or post["user_id"] == user.user_id:
        return
    forum_class = await get_forum_class(db, post["class_id"])
    if forum_class["teacher_id"] != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized to modify this post")

async def update_post(db: AsyncIOMotorDatabase, post_id: str, updates: dict) -> dict:
    if updates:
        updates["is_edited"] = True
        updates["updated_at"] = datetime.utcnow()
        await db.forum_posts.update_one({"post_id": post_id}, {"$set": updates})
    return await get_post(db, post_id)

async def delete_post(db: AsyncIOMotorDatabase, post_id: str):
    await db.forum_posts.delete_one({"post_id": post_id})

# ==================== AGGREGATED VIEWS ====================

async def get_class_with_details(db: AsyncIOMotorDatabase, class_id: str) -> dict:
    """Class, members, posts and courses in one response"""
    forum_class = await get_forum_class(db, class_id)
    teacher = await get_user(db, forum_class["teacher_id"])

    return {
        **forum_class,
        "teacher": public_user(teacher),
        "members": await get_class_members(db, class_id),
        "posts": await get_posts(db, class_id),
        "courses": await get_class_courses(db, class_id)
    }

async def get_my_classes_with_details(db: AsyncIOMotorDatabase, user_id: str) -> List[dict]:
    """Classes the student belongs to, with teacher, counts and courses"""
    cursor = db.forum_members.find({"user_id": user_id}).sort("joined_at", -1)
    memberships = await cursor.to_list(length=None)

    results = []
    for member in memberships:
        forum_class = await db.forum_classes.find_one({"class_id": member["class_id"]})
        if not forum_class:
            logger.warning("Membership %s points at missing class %s", member["member_id"], member["class_id"])
            continue
        forum_class = serialize_doc(forum_class)

        courses = [link["course"] for link in await get_class_courses(db, forum_class["class_id"])]
        teacher = await get_user(db, forum_class["teacher_id"])

        results.append({
            **forum_class,
            "teacher": public_user(teacher),
            "member_count": await db.forum_members.count_documents({"class_id": forum_class["class_id"]}),
            "course_count": len(courses),
            "joined_at": member["joined_at"],
            "courses": courses
        })

    return results
