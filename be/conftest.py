"""
Shared pytest fixtures

Each test gets fresh in-memory SQLite databases registered as the FP and HC
division databases, with the per-division tables already created.
"""

import os
import sys

# Fixed division allow-list for the test run (read by utils.config at import)
os.environ["DIVISIONS"] = "FP,HC"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ["BOOTSTRAP_SCHEMAS"] = "false"

sys.path.insert(0, os.path.dirname(__file__))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from APIs.Core import create_access_token
from Database.bootstrap import bootstrap_division_schemas
from Database.session import division_db_manager, get_division_session
from Models.AEBF.DivisionTables import resolve_tables
from utils.cache import invalidate_cache
from utils.rate_limiter import rate_limiter


def _memory_engine():
    return create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )


@pytest.fixture(autouse=True)
def division_databases():
    engines = {code: _memory_engine() for code in ("fp", "hc")}
    for code, engine in engines.items():
        division_db_manager.register_engine(code, engine)
    bootstrap_division_schemas()
    invalidate_cache()
    rate_limiter.reset()
    yield engines
    division_db_manager.dispose_all()
    invalidate_cache()


@pytest.fixture
def db(division_databases):
    session = get_division_session("FP")
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fp_tables():
    return resolve_tables("FP")


@pytest.fixture
def client():
    from main import app
    return TestClient(app)


@pytest.fixture
def auth_headers():
    token = create_access_token({"sub": "budget.tester", "role": "admin"})
    return {"Authorization": f"Bearer {token}"}
