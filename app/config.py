"""
E-Learning Platform Configuration
Database, auth, evaluator and gamification settings
"""

import os

# MongoDB
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "elearn_db")

# Auth (JWT bearer tokens)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 8)))
PBKDF2_ITERATIONS = int(os.getenv("PBKDF2_ITERATIONS", "100000"))

# CORS
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")

# Essay evaluator (external grading service)
ESSAY_EVALUATOR_URL = os.getenv("ESSAY_EVALUATOR_URL", "http://localhost:8000/api/evaluate")
ESSAY_EVALUATOR_TIMEOUT_SECONDS = float(os.getenv("ESSAY_EVALUATOR_TIMEOUT_SECONDS", "30"))
ESSAY_MAX_BAND = 9

# Exam timing
EXAM_GRACE_SECONDS = int(os.getenv("EXAM_GRACE_SECONDS", "30"))

# Gamification
LESSON_COMPLETION_POINTS = 10

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def cors_origins_list() -> list:
    """Parse CORS origins from comma-separated string"""
    return [origin.strip() for origin in CORS_ORIGINS.split(",") if origin.strip()]
