import asyncio
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

import app.database
from app.auth.auth_utils import create_access_token, hash_password
from app.main import app as fastapi_app


@pytest.fixture
def db(monkeypatch):
    """Fresh in-memory database per test"""
    mock_db = AsyncMongoMockClient()["elearn_test"]
    monkeypatch.setattr(app.database, "db", mock_db)
    return mock_db


@pytest.fixture
def client(db):
    with TestClient(fastapi_app) as test_client:
        yield test_client


def run(coro):
    """Drive a motor-style coroutine from sync test code"""
    return asyncio.run(coro)


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register(client, name, email, role="student", password="secret123"):
    """Register an account; returns (user, headers)"""
    resp = client.post("/auth/register", json={
        "name": name,
        "email": email,
        "password": password,
        "role": role
    })
    assert resp.status_code == 201, resp.text
    body = resp.json()
    return body["user"], auth_header(body["token"])


@pytest.fixture
def student(client):
    return register(client, "Alice Student", "alice@example.com")


@pytest.fixture
def teacher(client):
    return register(client, "Tom Teacher", "tom@example.com", role="teacher")


@pytest.fixture
def admin(client, db):
    """Admins cannot self-register, so seed one directly"""
    user = {
        "user_id": "USR_ADMIN",
        "name": "Ada Admin",
        "email": "admin@example.com",
        "password_hash": hash_password("secret123"),
        "role": "admin",
        "points": 0,
        "streak": 0,
        "level": "Beginner",
        "last_active_date": None,
        "is_active": True,
        "created_at": datetime.utcnow()
    }
    run(db.users.insert_one(user))
    return user, auth_header(create_access_token(user["user_id"], "admin"))


def make_course(client, headers, **overrides):
    payload = {
        "title": "Python Basics",
        "description": "Start here",
        "category": "programming",
        "price": 49.0,
        "chapters": [
            {
                "title": "Getting started",
                "order": 1,
                "lessons": [
                    {"title": "Install Python", "order": 1},
                    {"title": "Hello world", "order": 2}
                ]
            }
        ]
    }
    payload.update(overrides)
    resp = client.post("/courses", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()
