"""Alembic environment for the photobatch job store."""

from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path
from typing import Any

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

# migrations run from the repository root without an installed package
SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.append(str(SRC_DIR))

from photobatch.config import load_config  # noqa: E402
from photobatch.db.db_models import Base  # noqa: E402

load_dotenv(".env.local")
load_dotenv(".env", override=False)

alembic_config = context.config
if alembic_config.config_file_name is not None:
    fileConfig(alembic_config.config_file_name)


def database_url() -> str:
    """Explicit ``sqlalchemy.url`` wins; otherwise the app's own resolution."""
    explicit = alembic_config.get_main_option("sqlalchemy.url")
    if explicit:
        return explicit
    settings = load_config()
    settings.ensure_directories()
    return settings.resolved_database_url()


def _configure(**kwargs: Any) -> None:
    # batch mode lets ALTER TABLE work on SQLite
    context.configure(
        target_metadata=Base.metadata,
        compare_type=True,
        render_as_batch=True,
        **kwargs,
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_offline() -> None:
    _configure(url=database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})


def migrate_online() -> None:
    engine = create_engine(database_url(), poolclass=pool.NullPool)
    try:
        with engine.connect() as connection:
            _configure(connection=connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    migrate_offline()
else:
    migrate_online()
