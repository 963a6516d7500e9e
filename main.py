#!/usr/bin/env python3
"""
Packspace -- account, session and password-recovery service.

Usage:
  python main.py migrate                 apply pending schema migrations
  python main.py migrate --list          show the migration ledger
  python main.py purge-sessions          delete expired sessions
  python main.py serve                   run the API under uvicorn
  python main.py serve --host 0.0.0.0 --port 8080 --reload

Environment variables (see core/config.py for the full list):
  DATABASE_URL     SQLAlchemy URL of the credential store.
  DEBUG            true for local development (auto non-Secure cookies, log mailer).
  RESEND_API_KEY   Enables real password-reset email delivery.
"""

import argparse
import logging
import sys

from auth.errors import MigrationError
from auth.migrations import applied_migrations, run_migrations
from auth.sessions import SessionManager
from auth.store import CredentialStore, make_engine
from core.config import get_settings


def _cmd_migrate(args: argparse.Namespace) -> int:
    engine = make_engine(args.database_url or get_settings().database_url)
    try:
        if args.list:
            records = applied_migrations(engine)
            if not records:
                print("  No migrations applied.")
            for record in records:
                print(f"  {record.name:<40} {record.run_at.isoformat()}")
            return 0
        try:
            applied = run_migrations(engine)
        except MigrationError as e:
            print(f"  [!] {e}")
            return 1
        if applied:
            for name in applied:
                print(f"  applied {name}")
        else:
            print("  Schema is up to date.")
        return 0
    finally:
        engine.dispose()


def _cmd_purge_sessions(args: argparse.Namespace) -> int:
    store = CredentialStore(args.database_url or get_settings().database_url)
    try:
        removed = SessionManager(store, get_settings()).delete_expired_sessions()
    finally:
        store.close()
    print(f"  Removed {removed} expired session(s).")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="packspace",
        description="Packspace account and session service.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    migrate = sub.add_parser("migrate", help="Apply pending schema migrations.")
    migrate.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    migrate.add_argument("--list", action="store_true", help="Show applied migrations and exit.")
    migrate.set_defaults(func=_cmd_migrate)

    purge = sub.add_parser("purge-sessions", help="Delete sessions whose expiry has passed.")
    purge.add_argument("--database-url", default=None, help="Override DATABASE_URL.")
    purge.set_defaults(func=_cmd_purge_sessions)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development).")
    serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
