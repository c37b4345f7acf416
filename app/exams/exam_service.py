import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fastapi import HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.auth.auth_utils import UserContext
from app.auth.user_service import get_public_users, get_user, public_user
from app.config import EXAM_GRACE_SECONDS, ESSAY_MAX_BAND
from app.database import generate_id, serialize_doc, serialize_many
from app.exams.essay_evaluator import evaluate_essay, safe_string, strip_html
from app.exams.exam_models import QuestionType
from app.forum.forum_permissions import is_class_member
from app.gamification.points import award_points, record_activity

logger = logging.getLogger(__name__)

# ==================== VALIDATION ====================

def validate_question(question: dict):
    """Multiple choice needs at least two options and an answer index inside them"""
    if question["type"] == QuestionType.MULTIPLE_CHOICE.value:
        options = question.get("options") or []
        if len(options) < 2:
            raise HTTPException(status_code=400, detail="Multiple choice questions need at least 2 options")
        answer = question.get("correct_answer")
        if answer is None or not 0 <= answer < len(options):
            raise HTTPException(status_code=400, detail="correct_answer must index one of the options")
    else:
        question["options"] = None
        question["correct_answer"] = None

def validate_question_set(questions: List[dict]):
    if not questions:
        raise HTTPException(status_code=400, detail="An exam needs at least one question")
    for question in questions:
        validate_question(question)

# ==================== EXAM CRUD ====================

async def create_exam(db: AsyncIOMotorDatabase, teacher: UserContext, data: dict) -> dict:
    questions = data.pop("questions", [])
    validate_question_set(questions)

    exam = {
        "exam_id": generate_id("EXM"),
        "title": data["title"],
        "description": data.get("description"),
        "duration": data["duration"],
        "created_by": teacher.user_id,
        "total_questions": 0,
        "total_points": 0,
        "is_active": data.get("is_active", True),
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow()
    }
    await db.exams.insert_one(exam)
    await insert_questions(db, exam["exam_id"], questions)
    await refresh_exam_totals(db, exam["exam_id"])

    logger.info("Exam %s created by %s with %d questions", exam["exam_id"], teacher.user_id, len(questions))
    return await get_exam_with_details(db, exam["exam_id"], include_answers=True)

async def insert_questions(db: AsyncIOMotorDatabase, exam_id: str, questions: List[dict]):
    docs = []
    for index, question in enumerate(questions):
        docs.append({
            "question_id": generate_id("EXQ"),
            "exam_id": exam_id,
            "type": question["type"],
            "question": question["question"],
            "options": question.get("options"),
            "correct_answer": question.get("correct_answer"),
            "points": question["points"],
            "order": question.get("order") or index + 1
        })
    if docs:
        await db.exam_questions.insert_many(docs)

async def refresh_exam_totals(db: AsyncIOMotorDatabase, exam_id: str):
    """total_questions / total_points always derive from the stored questions"""
    questions = await db.exam_questions.find({"exam_id": exam_id}).to_list(length=None)
    await db.exams.update_one(
        {"exam_id": exam_id},
        {"$set": {
            "total_questions": len(questions),
            "total_points": round(sum(q["points"] for q in questions), 2),
            "updated_at": datetime.utcnow()
        }}
    )

async def get_exam(db: AsyncIOMotorDatabase, exam_id: str) -> dict:
    exam = await db.exams.find_one({"exam_id": exam_id})
    if not exam:
        raise HTTPException(status_code=404, detail="Exam not found")
    return serialize_doc(exam)

def is_exam_owner(exam: dict, user: UserContext) -> bool:
    return user.is_admin or exam.get("created_by") == user.user_id

def verify_exam_owner(exam: dict, user: UserContext):
    if not is_exam_owner(exam, user):
        raise HTTPException(status_code=403, detail="Not authorized to manage this exam")

async def list_teacher_exams(db: AsyncIOMotorDatabase, teacher_id: str) -> List[dict]:
    cursor = db.exams.find({"created_by": teacher_id}).sort("created_at", -1)
    return serialize_many(await cursor.to_list(length=None))

async def get_exam_questions(db: AsyncIOMotorDatabase, exam_id: str, include_answers: bool) -> List[dict]:
    cursor = db.exam_questions.find({"exam_id": exam_id}).sort("order", 1)
    questions = serialize_many(await cursor.to_list(length=None))
    if not include_answers:
        for question in questions:
            question.pop("correct_answer", None)
    return questions

async def get_exam_with_details(db: AsyncIOMotorDatabase, exam_id: str, include_answers: bool = False) -> dict:
    exam = await get_exam(db, exam_id)
    return {**exam, "questions": await get_exam_questions(db, exam_id, include_answers)}

async def update_exam(db: AsyncIOMotorDatabase, exam_id: str, updates: dict) -> dict:
    """Update exam fields; a given question list replaces the stored one"""
    questions = updates.pop("questions", None)
    if questions is not None:
        validate_question_set(questions)
        await db.exam_questions.delete_many({"exam_id": exam_id})
        await insert_questions(db, exam_id, questions)

    if updates:
        updates["updated_at"] = datetime.utcnow()
        await db.exams.update_one({"exam_id": exam_id}, {"$set": updates})

    await refresh_exam_totals(db, exam_id)
    return await get_exam_with_details(db, exam_id, include_answers=True)

async def delete_exam(db: AsyncIOMotorDatabase, exam_id: str):
    await db.exams.delete_one({"exam_id": exam_id})
    await db.exam_questions.delete_many({"exam_id": exam_id})
    await db.class_exams.delete_many({"exam_id": exam_id})
    await db.exam_attempts.delete_many({"exam_id": exam_id})
    await db.exam_results.delete_many({"exam_id": exam_id})
    logger.info("Exam %s deleted", exam_id)

# ==================== QUESTION CRUD ====================

async def add_question(db: AsyncIOMotorDatabase, exam_id: str, question: dict) -> dict:
    validate_question(question)
    if not question.get("order"):
        question["order"] = await db.exam_questions.count_documents({"exam_id": exam_id}) + 1

    await insert_questions(db, exam_id, [question])
    await refresh_exam_totals(db, exam_id)
    return await get_exam_with_details(db, exam_id, include_answers=True)

async def get_question(db: AsyncIOMotorDatabase, question_id: str) -> dict:
    question = await db.exam_questions.find_one({"question_id": question_id})
    if not question:
        raise HTTPException(status_code=404, detail="Question not found")
    return serialize_doc(question)

async def update_question(db: AsyncIOMotorDatabase, question: dict, updates: dict) -> dict:
    merged = {**question, **updates}
    validate_question(merged)

    await db.exam_questions.update_one(
        {"question_id": question["question_id"]},
        {"$set": {
            "question": merged["question"],
            "options": merged.get("options"),
            "correct_answer": merged.get("correct_answer"),
            "points": merged["points"],
            "order": merged["order"]
        }}
    )
    await refresh_exam_totals(db, question["exam_id"])
    return await get_question(db, question["question_id"])

async def delete_question(db: AsyncIOMotorDatabase, question: dict):
    remaining = await db.exam_questions.count_documents({"exam_id": question["exam_id"]})
    if remaining <= 1:
        raise HTTPException(status_code=400, detail="An exam needs at least one question")

    await db.exam_questions.delete_one({"question_id": question["question_id"]})
    await refresh_exam_totals(db, question["exam_id"])

# ==================== CLASS ASSIGNMENT ====================

async def assign_exam_to_class(
    db: AsyncIOMotorDatabase,
    class_id: str,
    exam_id: str,
    teacher_id: str,
    due_date: Optional[datetime]
) -> dict:
    if await db.class_exams.find_one({"class_id": class_id, "exam_id": exam_id}):
        raise HTTPException(status_code=409, detail="Exam already assigned to this class")

    class_exam = {
        "class_exam_id": generate_id("CEX"),
        "class_id": class_id,
        "exam_id": exam_id,
        "assigned_by": teacher_id,
        "assigned_at": datetime.utcnow(),
        "due_date": due_date,
        "is_active": True
    }
    try:
        await db.class_exams.insert_one(class_exam)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Exam already assigned to this class")

    return serialize_doc(class_exam)

async def get_class_exams(db: AsyncIOMotorDatabase, class_id: str, student_id: Optional[str] = None) -> List[dict]:
    """
    Class assignments joined with their exam.
    For a student, each entry also carries that student's result (or None).
    """
    cursor = db.class_exams.find({"class_id": class_id}).sort("assigned_at", -1)
    class_exams = serialize_many(await cursor.to_list(length=None))

    results = []
    for class_exam in class_exams:
        exam = await db.exams.find_one({"exam_id": class_exam["exam_id"]})
        if not exam:
            continue
        entry = {**class_exam, "exam": serialize_doc(exam)}
        if student_id:
            result = await db.exam_results.find_one({"exam_id": class_exam["exam_id"], "user_id": student_id})
            entry["result"] = serialize_doc(result)
        results.append(entry)
    return results

async def get_class_exam(db: AsyncIOMotorDatabase, class_exam_id: str) -> dict:
    class_exam = await db.class_exams.find_one({"class_exam_id": class_exam_id})
    if not class_exam:
        raise HTTPException(status_code=404, detail="Class exam not found")
    return serialize_doc(class_exam)

async def remove_class_exam(db: AsyncIOMotorDatabase, class_exam_id: str):
    await db.class_exams.delete_one({"class_exam_id": class_exam_id})

# ==================== TAKING AN EXAM ====================

def seconds_left(exam: dict, started_at: datetime, now: Optional[datetime] = None) -> int:
    now = now or datetime.utcnow()
    elapsed = (now - started_at).total_seconds()
    return max(0, int(exam["duration"] * 60 - elapsed))

async def start_exam(db: AsyncIOMotorDatabase, exam: dict, user: UserContext) -> dict:
    """
    Record the start time (first call wins) and hand out the exam without answers
    """
    if not exam.get("is_active", True):
        raise HTTPException(status_code=400, detail="Exam is not active")

    if await db.exam_results.find_one({"exam_id": exam["exam_id"], "user_id": user.user_id}):
        raise HTTPException(status_code=409, detail="Exam already submitted")

    attempt_key = {"exam_id": exam["exam_id"], "user_id": user.user_id}
    try:
        attempt = await db.exam_attempts.find_one_and_update(
            attempt_key,
            {"$setOnInsert": {"attempt_id": generate_id("ATT"), "started_at": datetime.utcnow()}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        attempt = await db.exam_attempts.find_one(attempt_key)

    details = await get_exam_with_details(db, exam["exam_id"], include_answers=False)
    return {
        **details,
        "started_at": attempt["started_at"],
        "time_left_seconds": seconds_left(exam, attempt["started_at"])
    }

def parse_option_index(answer) -> Optional[int]:
    """
    Whole-number option index, or None.
    Accepts ints, integral floats and digit strings; bools and 1.9 are not indexes.
    """
    if isinstance(answer, bool):
        return None
    if isinstance(answer, int):
        return answer
    if isinstance(answer, float):
        if not answer.is_integer():
            return None
        try:
            return int(answer)
        except (OverflowError, ValueError):
            return None
    if isinstance(answer, str) and answer.strip().isdigit():
        return int(answer.strip())
    return None

def grade_multiple_choice(question: dict, answer) -> Tuple[float, bool, Optional[int]]:
    """Returns (earned, correct, normalized answer)"""
    chosen = parse_option_index(answer)
    if chosen is None:
        return 0, False, None

    correct = chosen == question.get("correct_answer")
    return (question["points"] if correct else 0), correct, chosen

def essay_points(question: dict, band: float) -> float:
    """Scale a 0-9 band onto the question's points"""
    return round(question["points"] * band / ESSAY_MAX_BAND, 2)

async def grade_submission(questions: List[dict], answers: Dict[str, object]) -> dict:
    """
    Grade every question server-side.
    Essays go to the external evaluator one by one; unanswered essays score 0
    without a call.
    """
    score = 0.0
    breakdown = []
    stored_answers = {}
    ai_results = {}

    for question in questions:
        qid = question["question_id"]
        answer = answers.get(qid)

        if question["type"] == QuestionType.MULTIPLE_CHOICE.value:
            earned, correct, chosen = grade_multiple_choice(question, answer)
            stored_answers[qid] = chosen
            breakdown.append({
                "question_id": qid,
                "type": question["type"],
                "earned": earned,
                "max_points": question["points"],
                "correct": correct
            })
        else:
            text = strip_html(answer if isinstance(answer, str) else None)
            stored_answers[qid] = safe_string(text)
            earned = 0
            if text:
                evaluation = await evaluate_essay(text)
                ai_results[qid] = evaluation
                if evaluation["status"] == "evaluated":
                    earned = essay_points(question, evaluation["score"])
            breakdown.append({
                "question_id": qid,
                "type": question["type"],
                "earned": earned,
                "max_points": question["points"],
                "correct": None
            })

        score += earned

    return {
        "score": round(score, 2),
        "breakdown": breakdown,
        "answers": stored_answers,
        "ai_results": ai_results
    }

async def submit_exam(
    db: AsyncIOMotorDatabase,
    exam: dict,
    user: UserContext,
    answers: Dict[str, object],
    class_id: Optional[str] = None
) -> dict:
    exam_id = exam["exam_id"]
    if not exam.get("is_active", True):
        raise HTTPException(status_code=400, detail="Exam is not active")

    if class_id:
        if not await db.class_exams.find_one({"class_id": class_id, "exam_id": exam_id}):
            raise HTTPException(status_code=400, detail="Exam is not assigned to this class")
        if not await is_class_member(db, class_id, user.user_id):
            raise HTTPException(status_code=403, detail="You are not a member of this class")

    if await db.exam_results.find_one({"exam_id": exam_id, "user_id": user.user_id}):
        raise HTTPException(status_code=409, detail="Exam already submitted")

    questions = await get_exam_questions(db, exam_id, include_answers=True)
    known_ids = {q["question_id"] for q in questions}
    unknown = [qid for qid in answers if qid not in known_ids]
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown question ids: {', '.join(sorted(unknown))}")

    now = datetime.utcnow()
    attempt = await db.exam_attempts.find_one({"exam_id": exam_id, "user_id": user.user_id})
    time_limit = exam["duration"] * 60
    time_spent = int((now - attempt["started_at"]).total_seconds()) if attempt else time_limit

    graded = await grade_submission(questions, answers)

    result = {
        "result_id": generate_id("RES"),
        "exam_id": exam_id,
        "user_id": user.user_id,
        "class_id": class_id,
        "score": graded["score"],
        "total_points": exam.get("total_points", 0),
        "percentage": round(100 * graded["score"] / exam["total_points"], 2) if exam.get("total_points") else 0,
        "answers": graded["answers"],
        "breakdown": graded["breakdown"],
        "ai_results": graded["ai_results"],
        "time_spent": time_spent,
        "late": time_spent > time_limit + EXAM_GRACE_SECONDS,
        "status": "completed",
        "submitted_at": now
    }

    try:
        await db.exam_results.insert_one(result)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="Exam already submitted")

    await award_points(db, user.user_id, int(round(graded["score"])), "exam_submitted", result["result_id"])
    await record_activity(db, user.user_id)

    logger.info("Exam %s submitted by %s: %.2f/%s", exam_id, user.user_id, graded["score"], result["total_points"])
    return serialize_doc(result)

# ==================== RESULTS ====================

async def get_exam_results(db: AsyncIOMotorDatabase, exam_id: str) -> List[dict]:
    """All results for an exam, best first, each with the student"""
    cursor = db.exam_results.find({"exam_id": exam_id}).sort("score", -1)
    results = serialize_many(await cursor.to_list(length=None))

    users = await get_public_users(db, [r["user_id"] for r in results])
    for result in results:
        result["user"] = users.get(result["user_id"])
    return results

async def get_user_results(db: AsyncIOMotorDatabase, user_id: str) -> List[dict]:
    cursor = db.exam_results.find({"user_id": user_id}).sort("submitted_at", -1)
    results = serialize_many(await cursor.to_list(length=None))
    for result in results:
        exam = await db.exams.find_one({"exam_id": result["exam_id"]})
        result["exam_title"] = exam["title"] if exam else None
    return results

async def get_student_result(db: AsyncIOMotorDatabase, exam_id: str, user_id: str) -> Optional[dict]:
    return serialize_doc(await db.exam_results.find_one({"exam_id": exam_id, "user_id": user_id}))

async def get_result_with_details(db: AsyncIOMotorDatabase, result_id: str, user: UserContext) -> dict:
    """Result joined with its exam (answers included) and its student"""
    result = await db.exam_results.find_one({"result_id": result_id})
    if not result:
        raise HTTPException(status_code=404, detail="Result not found")
    result = serialize_doc(result)

    exam = await get_exam(db, result["exam_id"])
    if result["user_id"] != user.user_id and not is_exam_owner(exam, user):
        raise HTTPException(status_code=403, detail="Not authorized to view this result")

    student = await get_user(db, result["user_id"])
    return {
        **result,
        "exam": await get_exam_with_details(db, exam["exam_id"], include_answers=True),
        "user": public_user(student)
    }
