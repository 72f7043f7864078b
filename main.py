#!/usr/bin/env python3
"""
Scribe -- administration CLI.

Runs against the same SQLite files as the web app. Use it to bootstrap the
first admin account (self-registration only ever creates regular users) and
for routine housekeeping.

Usage:
  python main.py create-admin --username alice --email alice@example.com
  python main.py set-role bob admin
  python main.py list-users
  python main.py purge-sessions

Environment variables:
  SECRET_KEY      Required in production (DEBUG=false). Same value as the server.
  BCRYPT_ROUNDS   bcrypt cost factor for new password hashes (default 12).
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import hash_password
from auth.store import SessionStore, UserStore
from blog.forms import RegisterForm, validate
from core.errors import ValidationError


def _read_password(given: Optional[str]) -> str:
    """Use --password if supplied, otherwise prompt twice without echo."""
    if given:
        return given
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return first


def _find_user(users: UserStore, ident: str) -> Optional[User]:
    """Look a user up by email (contains '@') or username."""
    if "@" in ident:
        return users.get_by_email(ident)
    return users.get_by_username(ident)


def cmd_create_admin(args: argparse.Namespace, users: UserStore) -> int:
    password = _read_password(args.password)
    try:
        form = validate(
            RegisterForm,
            username=args.username,
            email=args.email,
            password=password,
            confirm_password=password,
        )
    except ValidationError as exc:
        for message in exc.messages:
            print(f"  [!] {message}")
        return 1

    if users.find_by_email_or_username(form.email, form.username) is not None:
        print("  [!] Username or email already exists.")
        return 1

    admin = User(
        username=form.username,
        email=form.email,
        role=Role.admin,
        hashed_password=hash_password(form.password),
    )
    try:
        admin.id = users.create_user(admin)
    except IntegrityError:
        print("  [!] Username or email already exists.")
        return 1
    print(f"  Created admin {admin.username} <{admin.email}> (id={admin.id}).")
    return 0


def cmd_set_role(args: argparse.Namespace, users: UserStore) -> int:
    user = _find_user(users, args.user)
    if user is None:
        print(f"  [!] No user matches '{args.user}'.")
        return 1
    role = Role(args.role)
    if user.role is role:
        print(f"  {user.username} is already {role.value}.")
        return 0
    users.update_role(user.id, role)
    print(f"  {user.username}: {user.role.value} -> {role.value}")
    return 0


def cmd_list_users(args: argparse.Namespace, users: UserStore) -> int:
    rows = users.list_users()
    if not rows:
        print("  No users.")
        return 0
    print(f"  {'ID':>4}  {'USERNAME':<30}  {'ROLE':<6}  EMAIL")
    print("  " + "-" * 72)
    for user in rows:
        print(f"  {user.id:>4}  {user.username:<30}  {user.role.value:<6}  {user.email}")
    print(f"\n  {len(rows)} user(s).")
    return 0


def cmd_purge_sessions(args: argparse.Namespace, sessions: SessionStore) -> int:
    removed = sessions.purge_expired()
    print(f"  Removed {removed} expired session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scribe",
        description="Administration commands for the Scribe blog.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin --username alice --email alice@example.com
  python main.py set-role bob@example.com admin
  python main.py set-role bob user
  python main.py list-users
  python main.py purge-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-admin", help="Create a user with the admin role")
    p.add_argument("--username", required=True, help="3-30 characters: letters, digits, '_' or '-'")
    p.add_argument("--email", required=True, help="Login email (stored lower-cased)")
    p.add_argument(
        "--password",
        default=None,
        help="Password (prompted for without echo when omitted)",
    )

    p = sub.add_parser("set-role", help="Promote or demote an existing user")
    p.add_argument("user", metavar="USER", help="Username or email")
    p.add_argument("role", choices=[r.value for r in Role], help="New role")

    sub.add_parser("list-users", help="Print every user with their role")
    sub.add_parser("purge-sessions", help="Delete sessions whose TTL has passed")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "purge-sessions":
        sessions = SessionStore()
        try:
            return cmd_purge_sessions(args, sessions)
        finally:
            sessions.close()

    handlers = {
        "create-admin": cmd_create_admin,
        "set-role": cmd_set_role,
        "list-users": cmd_list_users,
    }
    users = UserStore()
    try:
        return handlers[args.command](args, users)
    finally:
        users.close()


if __name__ == "__main__":
    sys.exit(main())
