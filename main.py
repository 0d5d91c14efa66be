#!/usr/bin/env python3
"""
Shelfguard management CLI -- role and permission administration.

The HTTP API only ever reads role assignments. Creating roles, granting
permissions, and assigning roles to users happens here, against the same
database the API uses (DATABASE_URL, or --database-url).

Usage:
  python main.py create-role ADMIN --description "Full access"
  python main.py create-permission book:create
  python main.py grant ADMIN book:create
  python main.py assign a@x.com ADMIN EDITOR
  python main.py unassign a@x.com EDITOR
  python main.py list-roles

Changes reach a user's access token at their next refresh or login.
"""

import argparse
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import ValidationFailed
from auth.store import UserStore
from core.config import get_settings


def _create_role(store: UserStore, args: argparse.Namespace) -> int:
    try:
        role = store.create_role(args.name, args.description)
    except IntegrityError:
        print(f"  [!] Role '{args.name.strip().upper()}' already exists.")
        return 1
    print(f"  Created role {role.name} (id={role.id}).")
    return 0


def _create_permission(store: UserStore, args: argparse.Namespace) -> int:
    try:
        permission = store.create_permission(args.name, args.description)
    except IntegrityError:
        print(f"  [!] Permission '{args.name.strip().lower()}' already exists.")
        return 1
    print(f"  Created permission {permission.name} (id={permission.id}).")
    return 0


def _grant(store: UserStore, args: argparse.Namespace) -> int:
    if not store.grant_permission(args.role, args.permission):
        print(f"  [!] Unknown role '{args.role}' or permission '{args.permission}'.")
        return 1
    print(f"  Granted {args.permission.strip().lower()} to {args.role.strip().upper()}.")
    return 0


def _assign(store: UserStore, args: argparse.Namespace) -> int:
    user = store.find_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    unknown = store.assign_roles(user.id, args.roles)
    if unknown:
        print(f"  [!] Unknown role(s): {', '.join(unknown)}")
        return 1
    print(f"  {user.email} now holds: {', '.join(r.name for r in store.find_roles(user.id))}")
    return 0


def _unassign(store: UserStore, args: argparse.Namespace) -> int:
    user = store.find_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    removed = store.remove_roles(user.id, args.roles)
    print(f"  Removed {removed} role(s) from {user.email}.")
    return 0


def _list_roles(store: UserStore, args: argparse.Namespace) -> int:
    roles = store.list_roles()
    if not roles:
        print("  No roles defined.")
        return 0
    for role in roles:
        permissions = ", ".join(sorted(p.name for p in role.permissions)) or "-"
        print(f"  {role.name:<20} {permissions}")
    return 0


_COMMANDS = {
    "create-role": _create_role,
    "create-permission": _create_permission,
    "grant": _grant,
    "assign": _assign,
    "unassign": _unassign,
    "list-roles": _list_roles,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shelfguard",
        description="Manage Shelfguard roles, permissions, and role assignments.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-role ADMIN --description "Full access"
  python main.py create-permission role:read
  python main.py grant ADMIN role:read
  python main.py assign a@x.com ADMIN
  DATABASE_URL=sqlite:///prod.db python main.py list-roles
        """,
    )
    parser.add_argument(
        "--database-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p = sub.add_parser("create-role", help="Create a role (name is upper-cased)")
    p.add_argument("name")
    p.add_argument("--description", default=None)

    p = sub.add_parser("create-permission", help="Create a permission (name is lower-cased)")
    p.add_argument("name")
    p.add_argument("--description", default=None)

    p = sub.add_parser("grant", help="Attach a permission to a role")
    p.add_argument("role")
    p.add_argument("permission")

    p = sub.add_parser("assign", help="Give a user one or more roles")
    p.add_argument("email")
    p.add_argument("roles", nargs="+", metavar="ROLE")

    p = sub.add_parser("unassign", help="Take one or more roles away from a user")
    p.add_argument("email")
    p.add_argument("roles", nargs="+", metavar="ROLE")

    sub.add_parser("list-roles", help="List every role with its permissions")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    db_url = args.database_url or get_settings().database_url
    store = UserStore(db_url=db_url)
    try:
        return _COMMANDS[args.command](store, args)
    except ValidationFailed as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    raise SystemExit(main())
