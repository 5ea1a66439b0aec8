# -*- coding: utf-8 -*-
"""declarative base and time helpers shared by all models"""

import time
from datetime import UTC, datetime

from sqlalchemy.orm import declarative_base

BASE = declarative_base()


def now_epoch() -> int:
    """Current time as integer epoch seconds, the storage format for audit timestamps."""
    return int(time.time())


def epoch_to_iso(value: int) -> str:
    return datetime.fromtimestamp(value, UTC).isoformat()


def utcnow() -> datetime:
    return datetime.now(UTC)


DRIVERS = {"mysql": "pymysql", "mariadb": "pymysql", "postgresql": "psycopg"}


def build_connection_string(config: dict) -> str:
    """SQLAlchemy URL for the ``database`` section of the bot config.

    Without such a section the bot runs on a local SQLite file. MySQL and MariaDB connections use
    ``utf8mb4``.
    """
    database_config = config.get("database")
    if not database_config:
        return "sqlite:///db.db"

    db_type = database_config["db_type"]
    driver = next((name for dialect, name in DRIVERS.items() if dialect in db_type), None)
    scheme = f"{db_type}+{driver}" if driver else db_type
    query = "?charset=utf8mb4" if driver == "pymysql" else ""

    credentials = database_config.get("db_username") or ""
    if database_config.get("db_password"):
        credentials += f":{database_config['db_password']}"
    location = ""
    if database_config.get("db_host"):
        location = f"@{database_config['db_host']}"
    if database_config.get("db_port"):
        location += f":{database_config['db_port']}"

    return f"{scheme}://{credentials}{location}/{database_config['db_name']}{query}"
