"""
env.py — Alembic environment for the Abi schema

The database URL always comes from abi settings (DATABASE_URL), never
from alembic.ini, so migrations hit the same database the API serves.

Business Rules:
- One transaction per migration run
- credit_ledger and approval_events are append-only; a migration may add
  columns to them but never UPDATE or DELETE their rows
- SQLite runs use batch mode so ALTER TABLE works in tests and local dev

Called by: alembic CLI
Depends on: abi.models (Base with every table registered), abi.config
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from abi.config import settings
from abi.models import Base

alembic_cfg = context.config
if alembic_cfg.config_file_name is not None:
    fileConfig(alembic_cfg.config_file_name)

target_metadata = Base.metadata
DATABASE_URL = settings.database_url


def _common_options(url: str) -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "render_as_batch": url.startswith("sqlite"),
    }


def run_offline() -> None:
    """Emit the migration SQL to stdout for review."""
    context.configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_common_options(DATABASE_URL),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    """Apply migrations against DATABASE_URL."""
    engine = create_engine(DATABASE_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **_common_options(DATABASE_URL))
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
