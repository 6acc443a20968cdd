"""
Schema migrations.

Files live in `disc/storage/migrations/` as `NNNN_description.sql` and ship as
package data. Applied versions are recorded with a sha256 of the file so an
edited migration is caught instead of silently skipped.
"""

from __future__ import annotations

import hashlib
import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from importlib import resources
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from disc.storage.config import DatabaseConfig, build_postgres_dsn, load_database_config

logger = logging.getLogger(__name__)

# Any constant works as long as every Disc process uses the same one.
MIGRATION_LOCK_KEY = 0x44495343  # "DISC"

_FILENAME_RE = re.compile(r"^(?P<version>\d{4})_[a-z0-9_]+\.sql$")


@dataclass(frozen=True)
class Migration:
    version: str
    name: str
    checksum: str
    sql: str


def load_migrations() -> List[Migration]:
    """Bundled migrations, ordered by version."""
    root = resources.files("disc.storage").joinpath("migrations")
    found: Dict[str, Migration] = {}
    for entry in root.iterdir():
        m = _FILENAME_RE.match(entry.name)
        if not m:
            continue
        version = m.group("version")
        if version in found:
            raise RuntimeError(f"Duplicate migration version {version}: {found[version].name}, {entry.name}")
        raw = entry.read_bytes()
        found[version] = Migration(
            version=version,
            name=entry.name,
            checksum=hashlib.sha256(raw).hexdigest(),
            sql=raw.decode("utf-8"),
        )
    return [found[v] for v in sorted(found)]


def pending_migrations(applied: Dict[str, str], migrations: Iterable[Migration]) -> List[Migration]:
    """Migrations not yet in `applied` (version -> checksum); raises if an applied one was edited."""
    out: List[Migration] = []
    for m in migrations:
        recorded = applied.get(m.version)
        if recorded is None:
            out.append(m)
        elif recorded != m.checksum:
            raise RuntimeError(
                f"Migration checksum mismatch for {m.version}: db={recorded[:12]} file={m.checksum[:12]}"
            )
    return out


def _connect(dsn: str):
    import psycopg  # type: ignore[import-not-found]

    return psycopg.connect(dsn)


@contextmanager
def _advisory_lock(conn) -> Iterator[None]:
    # Session-level lock: concurrent app replicas queue here instead of racing DDL.
    conn.execute("SELECT pg_advisory_lock(%s)", (MIGRATION_LOCK_KEY,))
    try:
        yield
    finally:
        conn.execute("SELECT pg_advisory_unlock(%s)", (MIGRATION_LOCK_KEY,))


def apply_migrations(*, dsn: str, migrations: Optional[Iterable[Migration]] = None) -> Tuple[int, List[str]]:
    """
    Apply pending migrations, each in its own transaction.

    Returns: (applied_count, applied_versions)
    """
    migs = list(migrations) if migrations is not None else load_migrations()
    done: List[str] = []

    with _connect(dsn) as conn, _advisory_lock(conn):
        conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations ("
            " version text PRIMARY KEY,"
            " checksum text NOT NULL,"
            " applied_at timestamptz NOT NULL DEFAULT now())"
        )
        rows = conn.execute("SELECT version, checksum FROM schema_migrations").fetchall()
        applied = {str(r[0]): str(r[1]) for r in rows}

        for m in pending_migrations(applied, migs):
            with conn.transaction():
                conn.execute(m.sql)
                conn.execute(
                    "INSERT INTO schema_migrations (version, checksum) VALUES (%s, %s)",
                    (m.version, m.checksum),
                )
            logger.info("Applied migration %s", m.name)
            done.append(m.version)

    return len(done), done


def maybe_auto_migrate(cfg: Optional[DatabaseConfig] = None) -> Tuple[bool, str]:
    """
    Startup hook: migrate when DB_AUTO_MIGRATE is set and Postgres is configured.

    Never raises; the server keeps starting and the message says what happened.
    Returns: (did_attempt, message)
    """
    cfg = cfg or load_database_config()
    if not cfg.auto_migrate:
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = build_postgres_dsn(cfg)
    if not dsn:
        return False, "Postgres DSN not configured"
    try:
        n, versions = apply_migrations(dsn=dsn)
    except Exception as e:
        return True, f"Migration failed: {e}"
    if not n:
        return True, "No pending migrations"
    return True, f"Applied {n} migration(s): {', '.join(versions)}"
