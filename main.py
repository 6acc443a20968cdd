#!/usr/bin/env python3
"""
Disc - music discovery API.
Serve the HTTP API and run the database maintenance tasks.
"""

import argparse
import logging
import sys
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", stream=sys.stderr
)

logger = logging.getLogger("disc")

#
# NOTE: Keep disc imports lazy (inside functions) so maintenance commands don't build
# the web app (and its database-backed stores) at import time.
#


def _require_dsn() -> str:
    from disc.storage.config import build_postgres_dsn, load_database_config

    dsn: Optional[str] = build_postgres_dsn(load_database_config())
    if not dsn:
        raise SystemExit("Postgres not configured (set POSTGRES_DSN or POSTGRES_* env vars)")
    return dsn


def migrate() -> None:
    from disc.storage.migrate import apply_migrations

    n, versions = apply_migrations(dsn=_require_dsn())
    if n:
        print(f"Applied {n} migration(s): {', '.join(versions)}")
    else:
        print("No pending migrations")


def make_admin(username: str) -> None:
    """Promote an existing user to admin."""
    from disc.auth.local import make_admin as promote
    from disc.core.errors import NotFoundError
    from disc.storage.postgres import PostgresStorage

    try:
        user = promote(PostgresStorage(_require_dsn()), username.strip())
    except NotFoundError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        raise SystemExit(1)
    print(f"User '{user.username}' is now an admin")


def prune_sessions() -> None:
    from disc.auth.session import PostgresSessionStore

    n = PostgresSessionStore(_require_dsn()).prune_expired()
    print(f"Removed {n} expired session(s)")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Disc music discovery API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the API server
  python main.py --serve --port 5000

  # Apply pending database migrations
  python main.py --migrate

  # Promote a user to admin
  python main.py --make-admin alice
        """,
    )

    parser.add_argument("--serve", action="store_true", help="Run the HTTP API server")
    parser.add_argument("--host", default="0.0.0.0", help="API server bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=5000, help="API server listen port (default: 5000)")
    parser.add_argument("--migrate", action="store_true", help="Apply pending Postgres migrations and exit")
    parser.add_argument("--make-admin", metavar="USERNAME", help="Grant admin privileges to an existing user")
    parser.add_argument(
        "--prune-sessions", action="store_true", help="Delete expired server-side session records and exit"
    )

    args = parser.parse_args()

    try:
        if args.migrate:
            migrate()
            return

        if args.make_admin:
            make_admin(args.make_admin)
            return

        if args.prune_sessions:
            prune_sessions()
            return

        if args.serve:
            from disc.api.server import run

            run(host=args.host, port=args.port)
            return

        # No arguments provided
        parser.print_help()

    except SystemExit:
        raise
    except Exception as e:
        logger.error("Command failed: %s", e)
        raise


if __name__ == "__main__":
    main()
