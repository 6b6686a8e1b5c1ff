import os
import sys

from logging.config import fileConfig

from sqlalchemy import engine_from_config
from sqlalchemy import pool

from alembic import context

# Add the project's root directory (be/) to the Python path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from utils.config import division_database_url  # noqa: E402 (loads .env)
from utils.divisions import validate_division  # noqa: E402
from Database.session import Base  # noqa: E402
from Models.AEBF.DivisionTables import resolve_tables  # noqa: E402

# this is the Alembic Config object
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Each division has its own database: alembic -x division=FP upgrade head
division_code = validate_division(context.get_x_argument(as_dictionary=True).get("division", "FP")).lower()
division_tables = {t.name for t in resolve_tables(division_code).all_tables()}

target_metadata = Base.metadata


def include_object(obj, name, type_, reflected, compare_to):
    """Only compare the tables owned by the selected division."""
    if type_ == "table":
        return name in division_tables
    return True


def _database_url() -> str:
    url = division_database_url(division_code)
    if not url:
        raise ValueError(f"No database URL configured for division {division_code.upper()}.")
    return url


# --- Migration Functions ---
def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = engine_from_config(
        {"sqlalchemy.url": _database_url()},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
        )

        with context.begin_transaction():
            context.run_migrations()


# --- Main Entry Point ---
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
