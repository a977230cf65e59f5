from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection

from mdm_server.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def database_url() -> str:
    url = config.get_main_option("sqlalchemy.url") or os.getenv("DATABASE_URL", "")
    if not url:
        raise RuntimeError("set DATABASE_URL or sqlalchemy.url before running migrations")
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def _configure(connection: Connection | None = None) -> None:
    options = {"target_metadata": target_metadata, "compare_type": True}
    if connection is None:
        context.configure(url=database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"}, **options)
    else:
        context.configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite", **options)


if context.is_offline_mode():
    _configure()
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = create_engine(database_url(), poolclass=pool.NullPool, future=True)
    with engine.connect() as connection:
        _configure(connection)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()
