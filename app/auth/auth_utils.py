# app/auth/auth_utils.py
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import jwt, JWTError
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.config import (
    JWT_SECRET_KEY, JWT_ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, PBKDF2_ITERATIONS
)
from app.database import get_db


# ==================== PASSWORDS ====================

def hash_password(password: str) -> str:
    """Salted PBKDF2-SHA256, stored as <salt>$<hexdigest>"""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS
    ).hex()
    return f"{salt}${digest}"


def verify_password(password: str, stored_hash: Optional[str]) -> bool:
    if not stored_hash or "$" not in stored_hash:
        return False
    salt, digest = stored_hash.split("$", 1)
    candidate = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS
    ).hex()
    return hmac.compare_digest(candidate, digest)


# ==================== TOKENS ====================

def create_access_token(user_id: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def _decode_jwt_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or Expired Token")


def verify_token(authorization: str = Header(None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = authorization.split(" ", 1)[1]
    return _decode_jwt_token(token)


# ==================== USER CONTEXT ====================

class UserContext:
    """
    Authenticated user resolved from the token subject
    """
    def __init__(self, profile: dict):
        self.user_id = profile["user_id"]
        self.name = profile.get("name")
        self.email = profile.get("email")
        self.role = profile.get("role", "student")
        self.profile = profile

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"


async def get_current_user(
    payload: dict = Depends(verify_token),
    db: AsyncIOMotorDatabase = Depends(get_db)
) -> UserContext:
    """
    Dependency: resolves the bearer token to a stored user

    Raises:
        401: Invalid token or user no longer exists
        403: Account disabled
    """
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token: missing user_id")

    profile = await db.users.find_one({"user_id": user_id})
    if not profile:
        raise HTTPException(status_code=401, detail="User no longer exists")

    if not profile.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    return UserContext(profile)


def require_role(*roles: str):
    """Dependency factory: only the given roles may call the endpoint"""
    async def checker(user: UserContext = Depends(get_current_user)) -> UserContext:
        if user.role not in roles:
            raise HTTPException(
                status_code=403,
                detail=f"Access denied. Requires role: {', '.join(roles)}"
            )
        return user
    return checker
