from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.auth.auth_utils import UserContext
from app.database import serialize_doc


async def get_forum_class(db: AsyncIOMotorDatabase, class_id: str) -> dict:
    forum_class = await db.forum_classes.find_one({"class_id": class_id})
    if not forum_class:
        raise HTTPException(status_code=404, detail="Class not found")
    return serialize_doc(forum_class)


async def verify_class_ownership(db: AsyncIOMotorDatabase, class_id: str, user: UserContext) -> dict:
    """
    Validates the user is the teacher who owns this class (or an admin)

    Raises:
        404: Class not found
        403: Not the owner
    """
    forum_class = await get_forum_class(db, class_id)

    if not user.is_admin and forum_class.get("teacher_id") != user.user_id:
        raise HTTPException(status_code=403, detail="Not authorized to manage this class")

    return forum_class


async def is_class_member(db: AsyncIOMotorDatabase, class_id: str, user_id: str) -> bool:
    member = await db.forum_members.find_one({"class_id": class_id, "user_id": user_id})
    return member is not None


async def verify_class_access(db: AsyncIOMotorDatabase, class_id: str, user: UserContext) -> dict:
    """
    Owner, admin or member may read the class

    Raises:
        404: Class not found
        403: Not a member
    """
    forum_class = await get_forum_class(db, class_id)

    if user.is_admin or forum_class.get("teacher_id") == user.user_id:
        return forum_class

    if not await is_class_member(db, class_id, user.user_id):
        raise HTTPException(status_code=403, detail="You are not a member of this class")

    return forum_class
