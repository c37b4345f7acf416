from pydantic import BaseModel, Field, EmailStr
from typing import Optional

# ==================== CLASS MODELS ====================

class ClassCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    subject: Optional[str] = None

class ClassUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    subject: Optional[str] = None
    is_active: Optional[bool] = None

# ==================== MEMBERSHIP MODELS ====================

class MemberAdd(BaseModel):
    email: EmailStr

class ClassCourseAdd(BaseModel):
    course_id: str

# ==================== POST MODELS ====================

class PostCreate(BaseModel):
    title: Optional[str] = Field(None, max_length=300)
    content: str = Field(..., min_length=1)

class PostUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=300)
    content: Optional[str] = Field(None, min_length=1)
