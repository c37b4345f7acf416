from pydantic import BaseModel, Field, EmailStr
from typing import Optional
from enum import Enum

# ==================== ENUMS ====================

class UserRole(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"

# ==================== REQUEST MODELS ====================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.STUDENT

    class Config:
        use_enum_values = True

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    avatar: Optional[str] = None
    bio: Optional[str] = None
    phone: Optional[str] = None

class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)

class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    role: Optional[UserRole] = None
    avatar: Optional[str] = None
    is_active: Optional[bool] = None

    class Config:
        use_enum_values = True
