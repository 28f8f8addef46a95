#!/usr/bin/env python3
"""
Gatehouse -- administration CLI.

Works directly against the configured database, bypassing the HTTP signup
gate. Use it to bootstrap the first account and manage permission tokens.

Usage:
  python main.py create-user alice --display-name "Alice"
  python main.py grant alice users:manage
  python main.py revoke alice users:manage
  python main.py show alice
  python main.py purge-sessions

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (default: sqlite:///gatehouse.db)
  SECRET_KEY     Required unless DEBUG=true (see core/config.py)
"""

import argparse
from getpass import getpass
from typing import Optional

from auth.errors import DuplicateUsernameError
from auth.passwords import get_hasher
from auth.session_store import SessionStore
from auth.store import UserStore
from core.config import get_settings


def _create_user(store: UserStore, args: argparse.Namespace) -> int:
    password = getpass("Password: ")
    confirmation = getpass("Repeat password: ")
    if password != confirmation:
        print("  [!] Passwords did not match.")
        return 1
    if not password:
        print("  [!] Password must not be empty.")
        return 1
    try:
        user_id = store.insert(args.username, args.display_name or args.username, get_hasher().hash(password))
    except DuplicateUsernameError:
        print(f"  [!] User '{args.username}' already exists.")
        return 1
    for token in args.grant or []:
        store.grant_permission(user_id, token)
    print(f"Created user '{args.username}' (id={user_id}).")
    return 0


def _change_permission(store: UserStore, args: argparse.Namespace) -> int:
    user = store.get_by_username(args.username)
    if user is None:
        print(f"  [!] No such user '{args.username}'.")
        return 1
    if args.command == "grant":
        changed = store.grant_permission(user.id, args.token)
        print(f"Granted '{args.token}' to '{user.username}'." if changed else "Already granted.")
    else:
        changed = store.revoke_permission(user.id, args.token)
        print(f"Revoked '{args.token}' from '{user.username}'." if changed else "Not granted; nothing to do.")
    return 0


def _show_user(store: UserStore, args: argparse.Namespace) -> int:
    user = store.get_by_username(args.username)
    if user is None:
        print(f"  [!] No such user '{args.username}'.")
        return 1
    print(f"id:           {user.id}")
    print(f"username:     {user.username}")
    print(f"display name: {user.display_name}")
    print(f"created:      {user.created_at}")
    print(f"permissions:  {', '.join(sorted(user.permissions)) or '(none)'}")
    return 0


def _purge_sessions(db_url: str) -> int:
    settings = get_settings()
    sessions = SessionStore(db_url, ttl=settings.session_ttl_seconds, remember_ttl=settings.remember_ttl_seconds)
    try:
        removed = sessions.purge_expired()
    finally:
        sessions.close()
    print(f"Removed {removed} expired session(s).")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Manage Gatehouse users, permissions and sessions.",
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user (prompts for the password)")
    create.add_argument("username")
    create.add_argument("--display-name", default=None, help="Defaults to the username")
    create.add_argument(
        "--grant",
        action="append",
        metavar="TOKEN",
        help="Permission token to grant right away (repeatable)",
    )

    for name, verb in (("grant", "Grant"), ("revoke", "Revoke")):
        p = sub.add_parser(name, help=f"{verb} a permission token")
        p.add_argument("username")
        p.add_argument("token")

    show = sub.add_parser("show", help="Print a user and their permissions")
    show.add_argument("username")

    sub.add_parser("purge-sessions", help="Delete expired sessions")

    args = parser.parse_args(argv)
    db_url = args.database_url or get_settings().database_url

    if args.command == "purge-sessions":
        return _purge_sessions(db_url)

    store = UserStore(db_url)
    try:
        if args.command == "create-user":
            return _create_user(store, args)
        if args.command in ("grant", "revoke"):
            return _change_permission(store, args)
        return _show_user(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
