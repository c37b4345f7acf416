import logging
from datetime import datetime
from typing import List, Optional

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.auth.auth_utils import hash_password, verify_password, create_access_token
from app.database import generate_id, serialize_doc

logger = logging.getLogger(__name__)

PRIVATE_FIELDS = ("password_hash", "_id")


def public_user(user: Optional[dict]) -> Optional[dict]:
    """Strip credentials before a user leaves the service"""
    if user is None:
        return None
    return {k: v for k, v in user.items() if k not in PRIVATE_FIELDS}


async def get_user(db: AsyncIOMotorDatabase, user_id: str) -> Optional[dict]:
    return await db.users.find_one({"user_id": user_id})


async def get_public_users(db: AsyncIOMotorDatabase, user_ids: List[str]) -> dict:
    """Batch lookup: user_id -> public profile"""
    if not user_ids:
        return {}
    cursor = db.users.find({"user_id": {"$in": list(set(user_ids))}})
    users = await cursor.to_list(length=None)
    return {u["user_id"]: public_user(u) for u in users}


# ==================== AUTH ====================

async def register_user(db: AsyncIOMotorDatabase, data: dict) -> dict:
    email = data["email"].lower()
    if data["role"] == "admin":
        raise HTTPException(status_code=400, detail="Admin accounts cannot be self-registered")

    if await db.users.find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")

    user = {
        "user_id": generate_id("USR"),
        "name": data["name"],
        "email": email,
        "password_hash": hash_password(data["password"]),
        "role": data["role"],
        "points": 0,
        "streak": 0,
        "level": "Beginner",
        "last_active_date": None,
        "avatar": None,
        "bio": None,
        "phone": None,
        "is_active": True,
        "created_at": datetime.utcnow()
    }

    try:
        await db.users.insert_one(user)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Email already registered")

    logger.info("Registered %s user %s", user["role"], user["user_id"])
    return {
        "user": public_user(user),
        "token": create_access_token(user["user_id"], user["role"])
    }


async def login_user(db: AsyncIOMotorDatabase, email: str, password: str) -> dict:
    user = await db.users.find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash")):
        logger.warning("Failed login for %s", email)
        raise HTTPException(status_code=401, detail="Incorrect email or password")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    return {
        "user": public_user(user),
        "token": create_access_token(user["user_id"], user["role"])
    }


# ==================== PROFILE ====================

async def update_profile(db: AsyncIOMotorDatabase, user_id: str, updates: dict) -> dict:
    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.users.update_one({"user_id": user_id}, {"$set": updates})
    return public_user(await get_user(db, user_id))


async def change_password(db: AsyncIOMotorDatabase, user_id: str, current: str, new: str):
    user = await get_user(db, user_id)
    if not verify_password(current, user.get("password_hash")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")

    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"password_hash": hash_password(new), "updated_at": datetime.utcnow()}}
    )


async def list_users(db: AsyncIOMotorDatabase, role: Optional[str] = None, email: Optional[str] = None) -> List[dict]:
    query = {}
    if role:
        query["role"] = role
    if email:
        query["email"] = email.lower()

    cursor = db.users.find(query).sort("created_at", 1)
    users = await cursor.to_list(length=None)
    return [public_user(u) for u in users]


async def delete_user(db: AsyncIOMotorDatabase, user_id: str):
    """
    Remove a user together with the records that only make sense for them.
    Courses and exams a teacher authored stay in the catalog.
    """
    result = await db.users.delete_one({"user_id": user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")

    enrollments = await db.enrollments.find({"user_id": user_id}).to_list(length=None)
    course_ids = [e["course_id"] for e in enrollments]
    if course_ids:
        await db.courses.update_many({"course_id": {"$in": course_ids}}, {"$inc": {"students": -1}})
    await db.enrollments.delete_many({"user_id": user_id})

    await db.cart_items.delete_many({"user_id": user_id})
    await db.orders.delete_many({"user_id": user_id})
    await db.forum_members.delete_many({"user_id": user_id})
    await db.forum_posts.delete_many({"user_id": user_id})
    await db.exam_attempts.delete_many({"user_id": user_id})
    await db.exam_results.delete_many({"user_id": user_id})
    await db.point_events.delete_many({"user_id": user_id})

    # Classes the user taught go with them
    owned = await db.forum_classes.find({"teacher_id": user_id}).to_list(length=None)
    class_ids = [c["class_id"] for c in owned]
    if class_ids:
        scope = {"class_id": {"$in": class_ids}}
        await db.forum_classes.delete_many(scope)
        await db.forum_members.delete_many(scope)
        await db.forum_courses.delete_many(scope)
        await db.forum_posts.delete_many(scope)
        await db.class_exams.delete_many(scope)
    logger.info("Deleted user %s", user_id)
