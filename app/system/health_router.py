from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.config import MONGO_URL, MONGO_DB_NAME
from app.database import get_db

router = APIRouter(tags=["System"])


@router.get("/")
async def read_root():
    return {"message": "E-Learning API is running"}


@router.get("/health")
async def health_check():
    """Liveness check"""
    return {"status": "healthy"}


@router.get("/test")
async def test_database(db: AsyncIOMotorDatabase = Depends(get_db)):
    """Database connectivity report"""
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_url": "Set" if MONGO_URL else "Not Set",
        "database_name": MONGO_DB_NAME,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        collections = await db.list_collection_names()
        response["collections"] = sorted(collections)[:20]
        response["database"] = "Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"Error: {str(e)[:50]}"
    return response
