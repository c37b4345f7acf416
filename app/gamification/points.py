"""
Points ledger, levels and daily streaks
"""

import logging
from datetime import datetime, date, timedelta
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.database import generate_id

logger = logging.getLogger(__name__)

# ==================== LEVELS ====================

LEVEL_THRESHOLDS = [
    ("Expert", 2400),
    ("Advanced", 1500),
    ("Intermediate", 500),
    ("Beginner", 0),
]


def calculate_level(points: int) -> str:
    """Calculate level name from total points"""
    for level, threshold in LEVEL_THRESHOLDS:
        if points >= threshold:
            return level
    return "Beginner"


# ==================== STREAKS ====================

def next_streak(current_streak: int, last_active: Optional[str], today: date) -> int:
    """
    Streak after activity on `today`.
    Same day keeps it, the following day extends it, any gap restarts at 1.
    """
    if not last_active:
        return 1
    last = date.fromisoformat(last_active)
    if last == today:
        return max(current_streak, 1)
    if last == today - timedelta(days=1):
        return current_streak + 1
    return 1


async def record_activity(db: AsyncIOMotorDatabase, user_id: str, today: Optional[date] = None) -> int:
    """Register learner activity for the day and return the updated streak"""
    today = today or datetime.utcnow().date()
    user = await db.users.find_one({"user_id": user_id})
    if not user:
        return 0

    streak = next_streak(user.get("streak", 0), user.get("last_active_date"), today)
    await db.users.update_one(
        {"user_id": user_id},
        {"$set": {"streak": streak, "last_active_date": today.isoformat()}}
    )
    return streak


# ==================== POINTS ====================

async def award_points(
    db: AsyncIOMotorDatabase,
    user_id: str,
    points: int,
    reason: str,
    ref_id: Optional[str] = None
) -> int:
    """
    Append to the points ledger and bump the user's running total.
    Returns the new total.
    """
    if points <= 0:
        user = await db.users.find_one({"user_id": user_id})
        return user.get("points", 0) if user else 0

    await db.point_events.insert_one({
        "event_id": generate_id("PTS"),
        "user_id": user_id,
        "points": points,
        "reason": reason,
        "ref_id": ref_id,
        "created_at": datetime.utcnow()
    })

    await db.users.update_one({"user_id": user_id}, {"$inc": {"points": points}})
    user = await db.users.find_one({"user_id": user_id})
    total = user.get("points", 0) if user else points

    level = calculate_level(total)
    if user and user.get("level") != level:
        await db.users.update_one({"user_id": user_id}, {"$set": {"level": level}})
        logger.info("User %s reached level %s", user_id, level)

    return total
