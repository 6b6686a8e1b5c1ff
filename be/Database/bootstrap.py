"""
Schema bootstrap

Creates the per-division tables (IF NOT EXISTS) once at service startup.
The Alembic migration in alembic/versions does the same for managed
deployments.
"""

import logging

from Database.session import Base, resolve_pool
from Models.AEBF.DivisionTables import registered_divisions, resolve_tables

logger = logging.getLogger(__name__)


def bootstrap_division_schema(division) -> None:
    tables = resolve_tables(division)
    engine = resolve_pool(tables.code)
    Base.metadata.create_all(bind=engine, tables=tables.all_tables(), checkfirst=True)
    logger.info(f"Schema ready for division {tables.code.upper()}")


def bootstrap_division_schemas() -> None:
    for code in registered_divisions():
        bootstrap_division_schema(code)
