"""
Shared pytest fixtures for the survey platform tests.

- cfg: an explicit Config pointing at a throwaway SQLite file
- db: an initialized SQLiteExecutor on that file
- users: one stored user per role
- client: FastAPI TestClient around create_app(cfg, db)
"""

import os
import sys
from typing import Any, Dict, Optional

import pytest
from fastapi.testclient import TestClient

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from survey_platform.api.server import create_app
from survey_platform.auth.crud import create_user
from survey_platform.config import Config
from survey_platform.db import SQLiteExecutor, init_db


TEST_SECRET = "test-signing-secret-0123456789abcdef0123456789abcdef"

PASSWORDS = {
    "admin": "admin123",
    "creator": "creator123",
    "respondent": "respondent123",
}


@pytest.fixture
def cfg(tmp_path) -> Config:
    return Config(
        DB_DSN=str(tmp_path / "survey_test.sqlite"),
        AUTH_JWT_SECRET=TEST_SECRET,
        AUTH_TOKEN_EXPIRE_MINUTES=60,
        BCRYPT_ROUNDS=4,
        CORS_ALLOW_ORIGINS="",
    )


@pytest.fixture
def db(cfg) -> SQLiteExecutor:
    executor = SQLiteExecutor(cfg.DB_DSN)
    init_db(executor)
    return executor


@pytest.fixture
def users(db, cfg) -> Dict[str, Dict[str, Any]]:
    return {
        role: create_user(db, username=role, password=password, role=role, rounds=cfg.BCRYPT_ROUNDS)
        for role, password in PASSWORDS.items()
    }


@pytest.fixture
def client(cfg, db, users):
    with TestClient(create_app(cfg, db)) as c:
        yield c


def login(client: TestClient, username: str, password: Optional[str] = None) -> str:
    resp = client.post("/api/login", json={"username": username, "password": password or PASSWORDS[username]})
    assert resp.status_code == 200, resp.text
    return resp.json()["token"]


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(client) -> Dict[str, Dict[str, str]]:
    return {role: bearer(login(client, role)) for role in PASSWORDS}
