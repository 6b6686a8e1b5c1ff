"""
Database Session Configuration

This module handles the SQLAlchemy connections for the divisional budget
backend. Every division (FP, HC, ...) owns its own database, so instead of a
single engine the module keeps one engine (connection pool) per division.

Key Components:
1. Base Model: Declarative base class for all per-division ORM models
2. DivisionDatabaseManager: Lazily creates and caches one engine and one
   session factory per division code
3. resolve_pool / get_division_session: Entry points used by services and
   routes to reach a division's database

Configuration:
- {CODE}_DATABASE_URL overrides the connection string of one division
- DIVISION_DATABASE_URL_TEMPLATE is used otherwise ("{code}" -> "fp", "hc")
- SQL_ECHO toggles SQL query logging
- Sessions configured without auto-flush for explicit control

Usage:
    from Database.session import get_division_session

    db = get_division_session("FP")
    try:
        result = db.query(Model).all()
        db.commit()
    finally:
        db.close()
"""

import logging
from contextlib import contextmanager
from threading import Lock
from typing import Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session as SessionType, declarative_base, sessionmaker

from utils.config import SQL_ECHO, division_database_url
from utils.divisions import validate_division

logger = logging.getLogger(__name__)

# Create declarative base class for all models
# All ORM models should inherit from this Base class
Base = declarative_base()


class DivisionDatabaseManager:
    """One engine + session factory per division code, created on first use."""

    def __init__(self):
        self._engines: Dict[str, Engine] = {}
        self._session_factories: Dict[str, sessionmaker] = {}
        self._lock = Lock()

    def get_engine(self, division_code: str) -> Engine:
        code = division_code.lower()
        with self._lock:
            if code not in self._engines:
                url = division_database_url(code)
                logger.info(f"Creating database engine for division {code.upper()}")
                self._install(code, create_engine(url, echo=SQL_ECHO, pool_pre_ping=True))
            return self._engines[code]

    def get_sessionmaker(self, division_code: str) -> sessionmaker:
        code = division_code.lower()
        self.get_engine(code)
        return self._session_factories[code]

    def register_engine(self, division_code: str, engine: Engine) -> None:
        """Use an existing engine for a division (tests, scripts)."""
        with self._lock:
            self._install(division_code.lower(), engine)

    def dispose_all(self) -> None:
        with self._lock:
            for engine in self._engines.values():
                engine.dispose()
            self._engines.clear()
            self._session_factories.clear()

    def _install(self, code: str, engine: Engine) -> None:
        self._engines[code] = engine
        # autoflush=False: Manual control over when changes are flushed to database
        self._session_factories[code] = sessionmaker(autoflush=False, bind=engine)


division_db_manager = DivisionDatabaseManager()


def resolve_pool(division) -> Engine:
    """Engine (connection pool) of the division's database."""
    return division_db_manager.get_engine(validate_division(division))


def get_division_session(division) -> SessionType:
    """New session bound to the division's database. Caller closes it."""
    factory = division_db_manager.get_sessionmaker(validate_division(division))
    return factory()


@contextmanager
def division_session_scope(division) -> Iterator[SessionType]:
    db = get_division_session(division)
    try:
        yield db
    finally:
        db.close()


def get_division_db(division: str):
    """FastAPI dependency for routes carrying {division} in the path."""
    db = get_division_session(division)
    try:
        yield db
    finally:
        db.close()
