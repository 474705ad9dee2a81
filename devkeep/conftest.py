# devkeep/conftest.py
import os
import tempfile
import uuid

import pytest

# Point the app at a throwaway database BEFORE anything imports devkeep.config
TEST_DB_PATH = tempfile.mktemp(suffix=".db")
os.environ["DATABASE_PATH"] = TEST_DB_PATH
os.environ["ENV"] = "dev"

from fastapi.testclient import TestClient  # noqa: E402

from devkeep.db import db_session, init_db, now_iso  # noqa: E402
from devkeep.main import app  # noqa: E402
from devkeep.security import create_access_token, hash_password  # noqa: E402

# Children first so deletes never trip foreign keys
TABLES = [
    "attendance",
    "message_reads",
    "messages",
    "notifications",
    "tasks",
    "notes",
    "commands",
    "credentials",
    "project_collaborators",
    "projects",
    "community_members",
    "communities",
    "users",
]

TEST_PASSWORD = "secret123"


@pytest.fixture(scope="session")
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture(autouse=True)
def reset_db():
    """Empty every table before each test."""
    init_db()
    with db_session() as conn:
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")
        conn.commit()
    yield


def generate_test_token(user_id: int, email: str) -> str:
    return create_access_token({"sub": str(user_id), "email": email})


def auth_headers(user: dict) -> dict:
    return {"Authorization": f"Bearer {user['token']}"}


@pytest.fixture
def make_user():
    """
    Factory creating a user row directly and returning
    {"id", "email", "name", "token", "headers"}.
    """
    def _make(name: str = None, email: str = None, plan: str = "basic", status: str = None) -> dict:
        name = name or f"user-{uuid.uuid4().hex[:6]}"
        email = (email or f"{name}@devkeep.io").lower()
        now = now_iso()
        with db_session() as conn:
            cur = conn.execute(
                """
                INSERT INTO users (name, email, password_hash, plan, subscription_status, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (name, email, hash_password(TEST_PASSWORD), plan, status, now, now),
            )
            conn.commit()
            user_id = cur.lastrowid
        user = {"id": user_id, "email": email, "name": name}
        user["token"] = generate_test_token(user_id, email)
        user["headers"] = auth_headers(user)
        return user

    return _make
