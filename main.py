#!/usr/bin/env python3
"""
Airlock -- Passwordless email sign-in service.

Usage:
  python main.py migrate
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py create-user alice@example.com
  python main.py create-user bob@example.com --suspended
  python main.py challenges alice@example.com

Environment variables (see core/config.py for the full list):
  DATABASE_URL  SQLite URL. Default: sqlite:///data/airlock.db
  JWT_SECRET    Signing key for bearer credentials (>= 32 chars). Required
                unless DEBUG=true.
  MAIL_BACKEND  ses (default) or memory.
"""

import argparse
import sys
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from core.config import get_settings
from core.errors import MigrationError
from core.models import is_valid_email
from directory.models import Permission, Service, UserStatus
from directory.store import UserStore
from storage.database import create_db_engine
from storage.migrator import SchemaMigrator


def _format_ms(epoch_ms: int) -> str:
    return datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _open_engine():
    """Create the engine and bring the schema current, as the server would."""
    engine = create_db_engine(get_settings().database_url)
    SchemaMigrator(engine).ensure()
    return engine


def cmd_migrate(args: argparse.Namespace) -> int:
    engine = create_db_engine(get_settings().database_url)
    migrator = SchemaMigrator(engine)
    try:
        before = migrator.current_version()
        after = migrator.ensure()
    except (MigrationError, SQLAlchemyError) as e:
        print(f"  [!] {e}")
        return 1
    finally:
        engine.dispose()
    if before == after:
        print(f"Schema already at v{after}.")
    else:
        print(f"Schema migrated v{before} -> v{after}.")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_create_user(args: argparse.Namespace) -> int:
    from sqlalchemy.exc import IntegrityError

    email = args.email.strip()
    if not is_valid_email(email):
        print(f"  [!] '{email}' doesn't look like a valid email address.")
        return 1

    engine = _open_engine()
    store = UserStore(engine)
    status = UserStatus.SUSPENDED if args.suspended else UserStatus.ACTIVE
    try:
        user = store.create_user(email, status, [(Service.PRUNK.value, Permission.USER.value, None)])
    except IntegrityError:
        print(f"  [!] A user with email {email} already exists.")
        return 1
    finally:
        engine.dispose()
    print(f"Created user {user.id} ({user.email}, {user.status.value}) with {Service.PRUNK.value}/{Permission.USER.value}.")
    return 0


def cmd_challenges(args: argparse.Namespace) -> int:
    """Print a user's challenge history. Hashes are shown truncated, never secrets."""
    from auth.store import ChallengeStore

    engine = _open_engine()
    try:
        user = UserStore(engine).get_by_email(args.email.strip())
        if user is None:
            print(f"  [!] No user with email {args.email}.")
            return 1
        history = ChallengeStore(engine).list_for_user(user.id)
    finally:
        engine.dispose()

    if not history:
        print(f"No challenges issued for {user.email}.")
        return 0
    print(f"Challenges for {user.email} (newest first):")
    for i, c in enumerate(history):
        state = "completed" if c.completed else ("active" if i == 0 else "superseded")
        print(f"  {c.id}  {_format_ms(c.sent_at)}  {c.token_hash[:12]}...  {state}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="airlock",
        description="Passwordless email sign-in service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("migrate", help="Bring the database schema to the current version")
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("serve", help="Run the HTTP server (uvicorn)")
    p.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    p.add_argument("--port", type=int, default=8080, help="Bind port (default: 8080)")
    p.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("create-user", help="Register a user with the default PRUNK/USER grant")
    p.add_argument("email", metavar="EMAIL")
    p.add_argument("--suspended", action="store_true", help="Create the user in SUSPENDED state")
    p.set_defaults(func=cmd_create_user)

    p = sub.add_parser("challenges", help="List a user's email challenges")
    p.add_argument("email", metavar="EMAIL")
    p.set_defaults(func=cmd_challenges)

    args = parser.parse_args()
    if not getattr(args, "func", None):
        parser.print_help()
        return
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
