from fastapi import APIRouter, Depends, HTTPException, Query
from motor.motor_asyncio import AsyncIOMotorDatabase
from typing import Optional

from app.auth.auth_utils import UserContext, get_current_user, require_role
from app.auth.user_models import (
    RegisterRequest, LoginRequest, ProfileUpdate, PasswordChange, AdminUserUpdate
)
from app.auth import user_service as service
from app.database import get_db

router = APIRouter(tags=["Users & Auth"])

# ==================== AUTH ====================

@router.post("/auth/register", status_code=201)
async def register(payload: RegisterRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    """Create an account and return it with a bearer token"""
    return await service.register_user(db, payload.dict())

@router.post("/auth/login")
async def login(payload: LoginRequest, db: AsyncIOMotorDatabase = Depends(get_db)):
    return await service.login_user(db, payload.email, payload.password)

# ==================== CURRENT USER ====================

@router.get("/users/me")
async def get_me(user: UserContext = Depends(get_current_user)):
    return service.public_user(user.profile)

@router.patch("/users/me")
async def update_me(
    data: ProfileUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return await service.update_profile(db, user.user_id, data.dict(exclude_none=True))

@router.patch("/users/me/password")
async def change_my_password(
    data: PasswordChange,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await service.change_password(db, user.user_id, data.current_password, data.new_password)
    return {"success": True, "message": "Password updated"}

# ==================== DIRECTORY ====================

@router.get("/users/check-email")
async def check_email(email: str = Query(...), db: AsyncIOMotorDatabase = Depends(get_db)):
    existing = await db.users.find_one({"email": email.lower()})
    return {"exists": existing is not None}

@router.get("/users")
async def list_users(
    role: Optional[str] = None,
    email: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(require_role("teacher", "admin"))
):
    """Teachers look students up when building classes"""
    return await service.list_users(db, role, email)

@router.get("/users/{user_id}")
async def get_user_profile(user_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    found = await service.get_user(db, user_id)
    if not found:
        raise HTTPException(status_code=404, detail="User not found")
    return service.public_user(found)

# ==================== ADMIN ====================

@router.patch("/users/{user_id}")
async def admin_update_user(
    user_id: str,
    data: AdminUserUpdate,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_role("admin"))
):
    if not await service.get_user(db, user_id):
        raise HTTPException(status_code=404, detail="User not found")
    return await service.update_profile(db, user_id, data.dict(exclude_none=True))

@router.delete("/users/{user_id}")
async def admin_delete_user(
    user_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    admin: UserContext = Depends(require_role("admin"))
):
    await service.delete_user(db, user_id)
    return {"success": True, "message": "User deleted"}
