from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.auth.auth_utils import UserContext, get_current_user, require_role
from app.database import get_db
from app.exams.exam_models import (
    ExamCreate, ExamUpdate, QuestionCreate, QuestionUpdate, ClassExamAssign, ExamSubmit
)
from app.exams import exam_service as service
from app.forum.forum_permissions import verify_class_access, verify_class_ownership

router = APIRouter(tags=["Exams"])

# ==================== EXAM MANAGEMENT ====================

@router.get("/exams")
async def list_my_exams(
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    return await service.list_teacher_exams(db, teacher.user_id)

@router.post("/exams", status_code=201)
async def create_exam(
    data: ExamCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher"))
):
    """Create exam and its questions; totals are computed here"""
    return await service.create_exam(db, teacher, data.dict())

@router.get("/exams/{exam_id}")
async def get_exam(
    exam_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Exam with ordered questions; correct answers only for the owner"""
    exam = await service.get_exam(db, exam_id)
    return await service.get_exam_with_details(db, exam_id, include_answers=service.is_exam_owner(exam, user))

@router.patch("/exams/{exam_id}")
async def update_exam(
    exam_id: str,
    data: ExamUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    exam = await service.get_exam(db, exam_id)
    service.verify_exam_owner(exam, teacher)
    return await service.update_exam(db, exam_id, data.dict(exclude_none=True))

@router.delete("/exams/{exam_id}")
async def delete_exam(
    exam_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    exam = await service.get_exam(db, exam_id)
    service.verify_exam_owner(exam, teacher)
    await service.delete_exam(db, exam_id)
    return {"success": True, "message": "Exam deleted"}

# ==================== QUESTIONS ====================

@router.get("/exams/{exam_id}/questions")
async def list_questions(
    exam_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    exam = await service.get_exam(db, exam_id)
    return await service.get_exam_questions(db, exam_id, include_answers=service.is_exam_owner(exam, user))

@router.post("/exams/{exam_id}/questions", status_code=201)
async def add_question(
    exam_id: str,
    data: QuestionCreate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    exam = await service.get_exam(db, exam_id)
    service.verify_exam_owner(exam, teacher)
    return await service.add_question(db, exam_id, data.dict())

@router.patch("/exam-questions/{question_id}")
async def update_question(
    question_id: str,
    data: QuestionUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    question = await service.get_question(db, question_id)
    service.verify_exam_owner(await service.get_exam(db, question["exam_id"]), teacher)
    return await service.update_question(db, question, data.dict(exclude_none=True))

@router.delete("/exam-questions/{question_id}")
async def delete_question(
    question_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    question = await service.get_question(db, question_id)
    service.verify_exam_owner(await service.get_exam(db, question["exam_id"]), teacher)
    await service.delete_question(db, question)
    return {"success": True, "message": "Question deleted"}

# ==================== CLASS ASSIGNMENT ====================

@router.get("/forum/classes/{class_id}/exams")
async def list_class_exams(
    class_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Students also get their own result next to each exam"""
    forum_class = await verify_class_access(db, class_id, user)
    student_id = None if forum_class["teacher_id"] == user.user_id or user.is_admin else user.user_id
    return await service.get_class_exams(db, class_id, student_id)

@router.post("/forum/classes/{class_id}/exams", status_code=201)
async def assign_exam(
    class_id: str,
    data: ClassExamAssign,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    await verify_class_ownership(db, class_id, teacher)
    exam = await service.get_exam(db, data.exam_id)
    service.verify_exam_owner(exam, teacher)
    return await service.assign_exam_to_class(db, class_id, data.exam_id, teacher.user_id, data.due_date)

@router.delete("/class-exams/{class_exam_id}")
async def remove_class_exam(
    class_exam_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    class_exam = await service.get_class_exam(db, class_exam_id)
    await verify_class_ownership(db, class_exam["class_id"], teacher)
    await service.remove_class_exam(db, class_exam_id)
    return {"success": True, "message": "Exam removed from class"}

# ==================== TAKING EXAMS ====================

@router.post("/exams/{exam_id}/start")
async def start_exam(
    exam_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    exam = await service.get_exam(db, exam_id)
    return await service.start_exam(db, exam, user)

@router.post("/exams/{exam_id}/submit", status_code=201)
async def submit_exam(
    exam_id: str,
    data: ExamSubmit,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Grade server-side (essays via the evaluator) and store the result"""
    exam = await service.get_exam(db, exam_id)
    return await service.submit_exam(db, exam, user, data.answers, data.class_id)

# ==================== RESULTS ====================

@router.get("/exams/{exam_id}/results")
async def exam_results(
    exam_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    teacher: UserContext = Depends(require_role("teacher", "admin"))
):
    exam = await service.get_exam(db, exam_id)
    service.verify_exam_owner(exam, teacher)
    return await service.get_exam_results(db, exam_id)

@router.get("/exams/{exam_id}/results/me")
async def my_exam_result(
    exam_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await service.get_exam(db, exam_id)
    result = await service.get_student_result(db, exam_id, user.user_id)
    if not result:
        raise HTTPException(status_code=404, detail="No result for this exam")
    return result

@router.get("/exam-results/me")
async def my_results(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return await service.get_user_results(db, user.user_id)

@router.get("/exam-results/{result_id}")
async def result_detail(
    result_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return await service.get_result_with_details(db, result_id, user)
