from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum

# ==================== ENUMS ====================

class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    ESSAY = "essay"

# ==================== QUESTION MODELS ====================

class QuestionCreate(BaseModel):
    type: QuestionType
    question: str = Field(..., min_length=1)
    options: Optional[List[str]] = None  # multiple choice only
    correct_answer: Optional[int] = None  # index into options
    points: float = Field(..., gt=0)
    order: Optional[int] = None

    class Config:
        use_enum_values = True

class QuestionUpdate(BaseModel):
    question: Optional[str] = Field(None, min_length=1)
    options: Optional[List[str]] = None
    correct_answer: Optional[int] = None
    points: Optional[float] = Field(None, gt=0)
    order: Optional[int] = None

# ==================== EXAM MODELS ====================

class ExamCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    duration: int = Field(..., gt=0)  # minutes
    is_active: bool = True
    questions: List[QuestionCreate]

class ExamUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None
    questions: Optional[List[QuestionCreate]] = None

# ==================== CLASS ASSIGNMENT ====================

class ClassExamAssign(BaseModel):
    exam_id: str
    due_date: Optional[datetime] = None

# ==================== SUBMISSION ====================

class ExamSubmit(BaseModel):
    answers: Dict[str, Any] = {}  # question_id -> option index or essay html
    class_id: Optional[str] = None
