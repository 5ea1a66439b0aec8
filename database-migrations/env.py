import os
import sys
from logging.config import fileConfig
from pathlib import Path

import yaml

# noinspection PyUnresolvedReferences
from alembic import context
from sqlalchemy import engine_from_config, pool

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "Warden"))

from utils.database import build_connection_string  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _resolve_database_url() -> str | None:
    """DATABASE_URL wins, then the ``database`` section of the bot config, then alembic-warden.ini."""
    database_url = os.environ.get("DATABASE_URL")
    if database_url:
        return database_url

    config_path = Path(os.environ.get("WARDEN_CONFIG", "config.yaml"))
    if not config_path.exists():
        return None
    with open(config_path) as f:
        bot_config = yaml.safe_load(f) or {}
    if "database" not in bot_config:
        return None
    return build_connection_string(bot_config)


resolved_url = _resolve_database_url()
if resolved_url:
    config.set_main_option("sqlalchemy.url", resolved_url)

# tables are created by create_all() on startup; migrations only alter existing deployments
target_metadata = None


def run_migrations_offline() -> None:
    """Emit the migration SQL for the configured URL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply the migrations over a live connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
