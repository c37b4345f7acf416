import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import LOG_LEVEL, cors_origins_list
from app.database import create_indexes, get_db_instance
from app.auth.user_router import router as user_router
from app.courses.course_router import router as course_router
from app.courses.enrollment_router import router as enrollment_router
from app.cart.cart_router import router as cart_router
from app.forum.forum_router import router as forum_router
from app.exams.exam_router import router as exam_router
from app.gamification.leaderboard_router import router as leaderboard_router
from app.system.health_router import router as health_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="E-Learning Platform API")


@app.on_event("startup")
async def startup_event():
    await create_indexes(get_db_instance())
    logger.info("E-Learning API started")


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ROUTER REGISTRATION ====================
app.include_router(health_router)
app.include_router(user_router)
app.include_router(course_router)
app.include_router(enrollment_router)
app.include_router(cart_router)
app.include_router(forum_router)
app.include_router(exam_router)
app.include_router(leaderboard_router)
# ============================================================
