#!/usr/bin/env python3
"""
Falcons -- learning platform API server.

Usage:
  python main.py                          # serve on HOST:PORT from settings
  python main.py serve --port 8000 --reload
  python main.py create-admin --email admin@example.com --first-name Ada --last-name Admin

Environment variables (or .env):
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Default: sqlite:///falcons.db next to this file.
  SMTP_HOST      Outbound mail server. Unset: emails are logged, not sent.

Self-registration never grants admin or manager. create-admin is how the first
admin account is made; later ones can be promoted through /api/v1/admin.
"""

import argparse
import getpass
import sys

from core.config import get_settings


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    settings = get_settings()
    # timeout_graceful_shutdown bounds how long in-flight requests may drain
    # after SIGTERM/SIGINT before lifespan shutdown runs and the process exits.
    uvicorn.run(
        "asgi:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=settings.shutdown_timeout_seconds,
    )


def _create_admin(args: argparse.Namespace) -> None:
    from auth.models import User
    from auth.store import UserStore
    from auth.tokens import hash_password
    from core.errors import ConflictError

    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        sys.exit(1)

    store = UserStore()
    try:
        user_id = store.create_user(
            User(
                email=args.email.lower(),
                first_name=args.first_name,
                last_name=args.last_name,
                role="admin",
                hashed_password=hash_password(password),
                is_email_verified=True,
            )
        )
    except ConflictError as exc:
        print(f"  [!] {exc.message}: {args.email}")
        sys.exit(1)
    finally:
        store.close()
    print(f"  Admin account {args.email} created (id={user_id}).")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="falcons",
        description="Falcons learning platform API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the API server (default)")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST setting)")
    serve.add_argument("--port", type=int, default=None, help="Bind port (default: PORT setting)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    serve.set_defaults(func=_serve)

    admin = sub.add_parser("create-admin", help="Create an admin account")
    admin.add_argument("--email", required=True)
    admin.add_argument("--first-name", required=True)
    admin.add_argument("--last-name", required=True)
    admin.add_argument("--password", default=None, help="Prompted for when omitted")
    admin.set_defaults(func=_create_admin)

    args = parser.parse_args()
    if args.command is None:
        args = parser.parse_args(["serve"])
    args.func(args)


if __name__ == "__main__":
    main()
