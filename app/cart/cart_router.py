from fastapi import APIRouter, Depends, HTTPException
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import BaseModel, Field

from app.auth.auth_utils import UserContext, get_current_user
from app.cart import cart_service as service
from app.database import get_db

router = APIRouter(tags=["Cart & Orders"])

# ==================== MODELS ====================

class CartAdd(BaseModel):
    course_id: str

class CheckoutRequest(BaseModel):
    payment_method: str = Field(..., min_length=1)

# ==================== CART ====================

@router.get("/cart")
async def get_cart(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    items = await service.get_cart(db, user.user_id)
    return {
        "items": items,
        "count": len(items),
        "total_amount": round(sum(i["course"].get("price", 0) for i in items), 2)
    }

@router.post("/cart", status_code=201)
async def add_to_cart(
    data: CartAdd,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return await service.add_to_cart(db, user.user_id, data.course_id)

@router.delete("/cart/{item_id}")
async def remove_from_cart(
    item_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    await service.remove_from_cart(db, user.user_id, item_id)
    return {"success": True}

@router.delete("/cart")
async def clear_cart(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    removed = await service.clear_cart(db, user.user_id)
    return {"success": True, "removed": removed}

@router.post("/cart/checkout", status_code=201)
async def checkout(
    data: CheckoutRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    """Create order from cart, clear it and enroll in each course"""
    return await service.checkout(db, user.user_id, data.payment_method)

# ==================== ORDERS ====================

@router.get("/orders")
async def my_orders(
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    return await service.get_orders(db, user.user_id)

@router.get("/orders/{order_id}")
async def get_order(
    order_id: str,
    db: AsyncIOMotorDatabase = Depends(get_db),
    user: UserContext = Depends(get_current_user)
):
    order = await service.get_order(db, order_id)
    if order["user_id"] != user.user_id and not user.is_admin:
        raise HTTPException(status_code=403, detail="Not your order")
    return order
