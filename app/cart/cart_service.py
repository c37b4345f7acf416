import logging
from datetime import datetime
from typing import List

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from app.courses import database as course_crud
from app.database import generate_id, serialize_doc, serialize_many

logger = logging.getLogger(__name__)

# ==================== CART ====================

async def get_cart(db: AsyncIOMotorDatabase, user_id: str) -> List[dict]:
    """Cart items joined with their course"""
    cursor = db.cart_items.find({"user_id": user_id}).sort("added_at", 1)
    items = serialize_many(await cursor.to_list(length=None))

    for item in items:
        item["course"] = await course_crud.get_course(db, item["course_id"])

    return [item for item in items if item["course"]]

async def add_to_cart(db: AsyncIOMotorDatabase, user_id: str, course_id: str) -> dict:
    course = await course_crud.require_course(db, course_id)
    if not course.get("is_active", True):
        raise HTTPException(status_code=400, detail="Course not available for purchase")

    if await course_crud.get_enrollment(db, course_id, user_id):
        raise HTTPException(status_code=400, detail="Already enrolled in this course")

    if await db.cart_items.find_one({"user_id": user_id, "course_id": course_id}):
        raise HTTPException(status_code=409, detail="Course already in cart")

    item = {
        "item_id": generate_id("CRT"),
        "user_id": user_id,
        "course_id": course_id,
        "added_at": datetime.utcnow()
    }
    try:
        await db.cart_items.insert_one(item)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Course already in cart")

    return {**serialize_doc(item), "course": course}

async def remove_from_cart(db: AsyncIOMotorDatabase, user_id: str, item_id: str):
    item = await db.cart_items.find_one({"item_id": item_id})
    if not item:
        raise HTTPException(status_code=404, detail="Cart item not found")
    if item["user_id"] != user_id:
        raise HTTPException(status_code=403, detail="Not your cart item")

    await db.cart_items.delete_one({"item_id": item_id})

async def clear_cart(db: AsyncIOMotorDatabase, user_id: str) -> int:
    result = await db.cart_items.delete_many({"user_id": user_id})
    return result.deleted_count

# ==================== CHECKOUT ====================

async def checkout(db: AsyncIOMotorDatabase, user_id: str, payment_method: str) -> dict:
    """
    Turn the cart into a completed order and enroll in every course.
    Prices come from the stored courses, never from the client.
    """
    items = await get_cart(db, user_id)
    if not items:
        raise HTTPException(status_code=400, detail="Cart is empty")

    total_amount = round(sum(item["course"].get("price", 0) for item in items), 2)

    order = {
        "order_id": generate_id("ORD"),
        "user_id": user_id,
        "courses": [item["course_id"] for item in items],
        "items": [
            {
                "course_id": item["course_id"],
                "title": item["course"]["title"],
                "price": item["course"].get("price", 0)
            }
            for item in items
        ],
        "total_amount": total_amount,
        "status": "completed",
        "payment_method": payment_method,
        "created_at": datetime.utcnow()
    }
    await db.orders.insert_one(order)
    await clear_cart(db, user_id)

    enrollments = []
    for item in items:
        enrollment, _ = await course_crud.enroll_user(db, item["course_id"], user_id)
        enrollments.append(enrollment)

    logger.info("Order %s completed for %s: %d courses, total %.2f",
                order["order_id"], user_id, len(items), total_amount)

    return {
        "order": serialize_doc(order),
        "enrollments": enrollments
    }

# ==================== ORDERS ====================

async def get_orders(db: AsyncIOMotorDatabase, user_id: str) -> List[dict]:
    cursor = db.orders.find({"user_id": user_id}).sort("created_at", -1)
    return serialize_many(await cursor.to_list(length=None))

async def get_order(db: AsyncIOMotorDatabase, order_id: str) -> dict:
    order = await db.orders.find_one({"order_id": order_id})
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return serialize_doc(order)
