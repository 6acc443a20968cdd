"""
Postgres settings.

Either `POSTGRES_DSN` (or `DATABASE_URL`, as most PaaS hosts export it) or the
`POSTGRES_HOST/PORT/DB/USER/PASSWORD` parts. `POSTGRES_CONNECT_TIMEOUT`
applies to both forms.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env(name: str) -> Optional[str]:
    return (os.getenv(name) or "").strip() or None


def _env_int(name: str, default: int) -> int:
    try:
        return int(_env(name) or default)
    except ValueError:
        return default


@dataclass(frozen=True)
class DatabaseConfig:
    dsn: Optional[str] = None
    host: Optional[str] = None
    port: int = 5432
    dbname: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    connect_timeout: int = 10
    auto_migrate: bool = False


def load_database_config() -> DatabaseConfig:
    return DatabaseConfig(
        dsn=_env("POSTGRES_DSN") or _env("DATABASE_URL"),
        host=_env("POSTGRES_HOST"),
        port=_env_int("POSTGRES_PORT", 5432),
        dbname=_env("POSTGRES_DB"),
        user=_env("POSTGRES_USER"),
        password=_env("POSTGRES_PASSWORD"),
        connect_timeout=max(1, _env_int("POSTGRES_CONNECT_TIMEOUT", 10)),
        auto_migrate=(_env("DB_AUTO_MIGRATE") or "").lower() in ("1", "true", "yes", "on"),
    )


def build_postgres_dsn(cfg: DatabaseConfig) -> Optional[str]:
    """Connection string for psycopg, or None when Postgres is not configured."""
    from psycopg.conninfo import make_conninfo  # type: ignore[import-not-found]

    if cfg.dsn:
        return make_conninfo(cfg.dsn, connect_timeout=cfg.connect_timeout)
    if not (cfg.host and cfg.dbname and cfg.user and cfg.password):
        return None
    # make_conninfo quotes special characters in passwords.
    return make_conninfo(
        host=cfg.host,
        port=cfg.port,
        dbname=cfg.dbname,
        user=cfg.user,
        password=cfg.password,
        connect_timeout=cfg.connect_timeout,
    )
