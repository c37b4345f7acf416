from datetime import date, datetime, timedelta

import pytest

from app.gamification.leaderboard_router import assign_ranks
from app.gamification.points import award_points, calculate_level, next_streak, record_activity
from conftest import make_course, register, run


@pytest.mark.parametrize("points,level", [
    (0, "Beginner"),
    (499, "Beginner"),
    (500, "Intermediate"),
    (1499, "Intermediate"),
    (1500, "Advanced"),
    (2400, "Expert"),
])
def test_calculate_level(points, level):
    assert calculate_level(points) == level


def test_next_streak():
    today = date(2026, 3, 10)
    assert next_streak(0, None, today) == 1
    assert next_streak(4, "2026-03-10", today) == 4
    assert next_streak(0, "2026-03-10", today) == 1
    assert next_streak(4, "2026-03-09", today) == 5
    assert next_streak(4, "2026-03-07", today) == 1


def test_assign_ranks_shares_ties():
    rows = assign_ranks([
        {"name": "Cara", "points": 50},
        {"name": "Abe", "points": 100},
        {"name": "Bea", "points": 50},
        {"name": "Dan", "points": 10},
    ])
    assert [(r["name"], r["rank"]) for r in rows] == [("Abe", 1), ("Bea", 2), ("Cara", 2), ("Dan", 4)]


def test_award_points_levels_up_and_writes_ledger(client, db, student):
    user, _ = student
    total = run(award_points(db, user["user_id"], 600, "bonus"))

    assert total == 600
    stored = run(db.users.find_one({"user_id": user["user_id"]}))
    assert stored["level"] == "Intermediate"
    assert run(db.point_events.count_documents({"user_id": user["user_id"]})) == 1

    assert run(award_points(db, user["user_id"], 0, "nothing")) == 600
    assert run(db.point_events.count_documents({"user_id": user["user_id"]})) == 1


def test_record_activity_builds_streak(client, db, student):
    user, _ = student
    day = date(2026, 3, 10)

    assert run(record_activity(db, user["user_id"], day)) == 1
    assert run(record_activity(db, user["user_id"], day)) == 1
    assert run(record_activity(db, user["user_id"], day + timedelta(days=1))) == 2
    assert run(record_activity(db, user["user_id"], day + timedelta(days=5))) == 1


def test_leaderboard_ranks_students(client, db, student, teacher):
    alice, _ = student
    bob, _ = register(client, "Bob", "bob@example.com")
    run(award_points(db, alice["user_id"], 30, "bonus"))
    run(award_points(db, bob["user_id"], 80, "bonus"))

    board = client.get("/leaderboard").json()
    assert board["time_range"] == "all"
    assert board["total_users"] == 2
    assert [(e["name"], e["rank"], e["points"]) for e in board["entries"]] == [
        ("Bob", 1, 80), ("Alice Student", 2, 30)
    ]

    limited = client.get("/leaderboard", params={"limit": 1}).json()
    assert len(limited["entries"]) == 1


def test_weekly_leaderboard_counts_recent_points_only(client, db, student):
    alice, _ = student
    bob, _ = register(client, "Bob", "bob@example.com")
    run(award_points(db, alice["user_id"], 30, "bonus"))
    run(award_points(db, bob["user_id"], 80, "bonus"))
    run(db.point_events.update_many(
        {"user_id": bob["user_id"]},
        {"$set": {"created_at": datetime.utcnow() - timedelta(days=20)}}
    ))

    weekly = client.get("/leaderboard", params={"time_range": "weekly"}).json()
    assert [(e["name"], e["points"]) for e in weekly["entries"]] == [("Alice Student", 30), ("Bob", 0)]

    monthly = client.get("/leaderboard", params={"time_range": "monthly"}).json()
    assert monthly["entries"][0]["name"] == "Bob"

    assert client.get("/leaderboard", params={"time_range": "yearly"}).status_code == 422


def test_leaderboard_reports_progress(client, teacher, student):
    _, teacher_headers = teacher
    _, headers = student
    course = make_course(client, teacher_headers)
    enrollment = client.post("/enrollments", json={"course_id": course["course_id"]}, headers=headers).json()["enrollment"]
    lesson_id = client.get(f"/courses/{course['course_id']}").json()["chapters"][0]["lessons"][0]["lesson_id"]
    client.post(f"/enrollments/{enrollment['enrollment_id']}/lessons/{lesson_id}/complete", headers=headers)

    entry = client.get("/leaderboard").json()["entries"][0]
    assert entry["progress"] == 50
    assert entry["courses_completed"] == 0
    assert entry["points"] == 10
    assert entry["streak"] == 1


def test_my_rank_and_achievements(client, db, student):
    alice, headers = student
    register(client, "Bob", "bob@example.com")
    run(award_points(db, alice["user_id"], 10, "bonus"))

    me = client.get("/leaderboard/me", headers=headers).json()
    assert me["rank"] == 1
    assert me["total_users"] == 2

    achievements = {a["achievement_id"]: a["earned"] for a in client.get("/achievements/me", headers=headers).json()}
    assert achievements == {"top_learner": True, "dedicated": False, "course_master": False}


def test_teachers_are_not_ranked(client, teacher):
    _, headers = teacher
    me = client.get("/leaderboard/me", headers=headers).json()
    assert me["rank"] is None
    assert me["total_users"] == 0
