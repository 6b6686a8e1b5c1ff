"""
Dialect aware INSERT ... ON CONFLICT DO UPDATE

PostgreSQL (production) and SQLite (tests, local runs) both support
ON CONFLICT; the insert construct comes from the dialect of the session's
bind.
"""

from typing import Dict, Iterable, List, Sequence

from sqlalchemy import Table
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def dialect_insert(db: Session, table: Table):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")


def dedupe_rows(rows: Iterable[Dict], key_columns: Sequence[str]) -> List[Dict]:
    """Keep the last row per conflict key; one statement may not touch a row twice."""
    by_key: Dict[tuple, Dict] = {}
    for row in rows:
        by_key[tuple(row[c] for c in key_columns)] = row
    return list(by_key.values())


def upsert_rows(
    db: Session,
    table: Table,
    rows: List[Dict],
    key_columns: Sequence[str],
    update_columns: Sequence[str],
    chunk_size: int = 1000,
) -> int:
    """
    Insert rows, overwriting update_columns when the key already exists.

    Runs inside the caller's transaction (no commit). Returns the number of
    rows sent to the database.
    """
    rows = dedupe_rows(rows, key_columns)
    for start in range(0, len(rows), chunk_size):
        chunk = rows[start:start + chunk_size]
        stmt = dialect_insert(db, table).values(chunk)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(key_columns),
            set_={col: stmt.excluded[col] for col in update_columns},
        )
        db.execute(stmt)
    return len(rows)
