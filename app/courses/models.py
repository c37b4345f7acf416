from pydantic import BaseModel, Field, validator
from typing import List, Optional
from enum import Enum

# ==================== ENUMS ====================

class CourseLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

class LessonType(str, Enum):
    VIDEO = "video"
    TEXT = "text"
    QUIZ = "quiz"

class EnrollmentStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"

# ==================== LESSON MODELS ====================

class LessonBase(BaseModel):
    title: str = Field(..., min_length=1)
    content: Optional[str] = None
    video_url: str = ""
    duration: Optional[str] = None
    order: int = 1
    is_free: bool = False
    type: LessonType = LessonType.VIDEO

    class Config:
        use_enum_values = True

class LessonCreate(LessonBase):
    chapter_id: str

class LessonUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = None
    video_url: Optional[str] = None
    duration: Optional[str] = None
    order: Optional[int] = None
    is_free: Optional[bool] = None
    type: Optional[LessonType] = None

    class Config:
        use_enum_values = True

# ==================== CHAPTER MODELS ====================

class ChapterBase(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    order: int = 1

class ChapterCreate(ChapterBase):
    course_id: str

class ChapterUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    order: Optional[int] = None

class NestedChapter(ChapterBase):
    lessons: List[LessonBase] = []

# ==================== COURSE MODELS ====================

class CourseCreate(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = ""
    category: str
    level: CourseLevel = CourseLevel.BEGINNER
    duration: Optional[str] = None
    price: float = Field(0, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    teacher_id: Optional[str] = None  # admins may assign; teachers always own
    is_active: bool = True
    chapters: List[NestedChapter] = []

    class Config:
        use_enum_values = True

class CourseUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[CourseLevel] = None
    duration: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    is_active: Optional[bool] = None

    class Config:
        use_enum_values = True

# ==================== ENROLLMENT MODELS ====================

class EnrollmentCreate(BaseModel):
    course_id: str

    @validator("course_id")
    def validate_course_id(cls, v):
        if not v.strip():
            raise ValueError("course_id is required")
        return v.strip()
