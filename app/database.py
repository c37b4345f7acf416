"""
MongoDB connection, id generation and index setup shared by every router
"""

import logging
import secrets
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from app.config import MONGO_URL, MONGO_DB_NAME

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(MONGO_URL)
db = client[MONGO_DB_NAME]


def get_db_instance() -> AsyncIOMotorDatabase:
    """Current database handle (swapped out in tests)"""
    return db


async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return get_db_instance()


def generate_id(prefix: str) -> str:
    """Generate unique ID with prefix, e.g. CRS_9F2C41A07B3D11E2"""
    return f"{prefix}_{secrets.token_hex(8).upper()}"


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if doc is not None:
        doc.pop("_id", None)
    return doc


def serialize_many(docs: List[dict]) -> List[dict]:
    return [serialize_doc(doc) for doc in docs]


# ==================== DATABASE INDEXES ====================

async def create_indexes(database: AsyncIOMotorDatabase):
    """
    Create database indexes.
    Unique indexes are what keep duplicate enrollments, memberships and
    results out when two requests race past the same pre-check.
    """

    # Users
    await database.users.create_index("user_id", unique=True)
    await database.users.create_index("email", unique=True)
    await database.users.create_index([("points", DESCENDING)])

    # Courses, chapters, lessons
    await database.courses.create_index("course_id", unique=True)
    await database.courses.create_index("teacher_id")
    await database.courses.create_index([("category", ASCENDING), ("is_active", ASCENDING)])
    await database.chapters.create_index("chapter_id", unique=True)
    await database.chapters.create_index([("course_id", ASCENDING), ("order", ASCENDING)])
    await database.lessons.create_index("lesson_id", unique=True)
    await database.lessons.create_index([("chapter_id", ASCENDING), ("order", ASCENDING)])
    await database.lessons.create_index("course_id")

    # Enrollments
    await database.enrollments.create_index("enrollment_id", unique=True)
    await database.enrollments.create_index([("user_id", ASCENDING), ("course_id", ASCENDING)], unique=True)

    # Cart & orders
    await database.cart_items.create_index("item_id", unique=True)
    await database.cart_items.create_index([("user_id", ASCENDING), ("course_id", ASCENDING)], unique=True)
    await database.orders.create_index("order_id", unique=True)
    await database.orders.create_index("user_id")

    # Forum classes
    await database.forum_classes.create_index("class_id", unique=True)
    await database.forum_classes.create_index("teacher_id")
    await database.forum_members.create_index("member_id", unique=True)
    await database.forum_members.create_index([("class_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    await database.forum_members.create_index("user_id")
    await database.forum_courses.create_index("link_id", unique=True)
    await database.forum_courses.create_index([("class_id", ASCENDING), ("course_id", ASCENDING)], unique=True)
    await database.forum_posts.create_index("post_id", unique=True)
    await database.forum_posts.create_index([("class_id", ASCENDING), ("created_at", DESCENDING)])

    # Exams
    await database.exams.create_index("exam_id", unique=True)
    await database.exams.create_index("created_by")
    await database.exam_questions.create_index("question_id", unique=True)
    await database.exam_questions.create_index([("exam_id", ASCENDING), ("order", ASCENDING)])
    await database.class_exams.create_index("class_exam_id", unique=True)
    await database.class_exams.create_index([("class_id", ASCENDING), ("exam_id", ASCENDING)], unique=True)
    await database.exam_attempts.create_index([("exam_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    await database.exam_results.create_index("result_id", unique=True)
    await database.exam_results.create_index([("exam_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    await database.exam_results.create_index("user_id")

    # Gamification ledger
    await database.point_events.create_index("event_id", unique=True)
    await database.point_events.create_index([("created_at", DESCENDING)])
    await database.point_events.create_index("user_id")

    logger.info("Database indexes created")
