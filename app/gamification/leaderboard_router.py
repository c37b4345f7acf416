from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.auth.auth_utils import UserContext, get_current_user
from app.database import get_db

router = APIRouter(tags=["Leaderboards"])


class TimeRange(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL = "all"


RANGE_DAYS = {
    TimeRange.WEEKLY: 7,
    TimeRange.MONTHLY: 30,
}

ACHIEVEMENTS = [
    {
        "achievement_id": "top_learner",
        "name": "Top Learner",
        "icon": "🏆",
        "description": "Reach #1 on the all-time leaderboard",
        "points": 500
    },
    {
        "achievement_id": "dedicated",
        "name": "Dedicated",
        "icon": "🔥",
        "description": "Keep a 30-day learning streak",
        "points": 300
    },
    {
        "achievement_id": "course_master",
        "name": "Course Master",
        "icon": "📚",
        "description": "Complete 5 courses",
        "points": 250
    },
]

# ==================== LEADERBOARD QUERIES ====================

async def get_points_in_range(db: AsyncIOMotorDatabase, since: datetime) -> dict:
    """user_id -> points earned since the given time, from the ledger"""
    pipeline = [
        {"$match": {"created_at": {"$gte": since}}},
        {"$group": {"_id": "$user_id", "points": {"$sum": "$points"}}}
    ]
    rows = await db.point_events.aggregate(pipeline).to_list(length=None)
    return {row["_id"]: row["points"] for row in rows}


async def get_enrollment_stats(db: AsyncIOMotorDatabase, user_ids: List[str]) -> dict:
    """user_id -> {"progress": mean progress, "courses_completed": n}"""
    cursor = db.enrollments.find({"user_id": {"$in": user_ids}})
    enrollments = await cursor.to_list(length=None)

    grouped = {}
    for enr in enrollments:
        grouped.setdefault(enr["user_id"], []).append(enr)

    stats = {}
    for user_id, items in grouped.items():
        stats[user_id] = {
            "progress": round(sum(e.get("progress", 0) for e in items) / len(items)),
            "courses_completed": sum(1 for e in items if e.get("status") == "completed")
        }
    return stats


def assign_ranks(rows: List[dict]) -> List[dict]:
    """
    Sort by points desc then name; equal points share a rank (1, 2, 2, 4)
    """
    rows.sort(key=lambda r: (-r["points"], (r.get("name") or "").lower()))
    previous_points = None
    rank = 0
    for index, row in enumerate(rows):
        if row["points"] != previous_points:
            rank = index + 1
            previous_points = row["points"]
        row["rank"] = rank
    return rows


async def build_leaderboard(db: AsyncIOMotorDatabase, time_range: TimeRange) -> List[dict]:
    students = await db.users.find({"role": "student"}).to_list(length=None)

    if time_range == TimeRange.ALL:
        points = {u["user_id"]: u.get("points", 0) for u in students}
    else:
        since = datetime.utcnow() - timedelta(days=RANGE_DAYS[time_range])
        points = await get_points_in_range(db, since)

    stats = await get_enrollment_stats(db, [u["user_id"] for u in students])

    rows = []
    for user in students:
        user_stats = stats.get(user["user_id"], {"progress": 0, "courses_completed": 0})
        rows.append({
            "user_id": user["user_id"],
            "name": user.get("name"),
            "avatar": user.get("avatar"),
            "points": points.get(user["user_id"], 0),
            "level": user.get("level", "Beginner"),
            "streak": user.get("streak", 0),
            **user_stats
        })

    return assign_ranks(rows)


def find_entry(rows: List[dict], user_id: str) -> Optional[dict]:
    return next((row for row in rows if row["user_id"] == user_id), None)

# ==================== ENDPOINTS ====================

@router.get("/leaderboard")
async def leaderboard(
    time_range: TimeRange = TimeRange.ALL,
    limit: int = Query(50, ge=1, le=200),
    db: AsyncIOMotorDatabase = Depends(get_db)
):
    """Student ranking, all time or by points earned in the window"""
    rows = await build_leaderboard(db, time_range)
    return {
        "time_range": time_range.value,
        "entries": rows[:limit],
        "total_users": len(rows)
    }


@router.get("/leaderboard/me")
async def my_rank(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    rows = await build_leaderboard(db, TimeRange.ALL)
    entry = find_entry(rows, user.user_id)
    if not entry:
        return {
            "rank": None,
            "points": user.profile.get("points", 0),
            "level": user.profile.get("level", "Beginner"),
            "total_users": len(rows)
        }
    return {**entry, "total_users": len(rows)}


@router.get("/achievements/me")
async def my_achievements(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    rows = await build_leaderboard(db, TimeRange.ALL)
    entry = find_entry(rows, user.user_id) or {}

    earned = {
        "top_learner": entry.get("rank") == 1 and entry.get("points", 0) > 0,
        "dedicated": user.profile.get("streak", 0) >= 30,
        "course_master": entry.get("courses_completed", 0) >= 5
    }

    return [
        {**achievement, "earned": earned[achievement["achievement_id"]]}
        for achievement in ACHIEVEMENTS
    ]
