#!/usr/bin/env python3
"""
TinyAuth admin CLI -- manage users of the configured store from a shell.

Usage:
  python main.py create-user alice@example.com s3cret!
  python main.py create-user bob@example.com hunter22 --field name=Bob
  python main.py grant alice@example.com admin
  python main.py revoke alice@example.com admin
  python main.py delete-user bob@example.com
  python main.py login alice@example.com s3cret!
  python main.py roles

Environment variables (see core/config.py):
  SECRET_KEY     JWT signing key, 32+ characters (or DEBUG=true for a dev key)
  DATABASE_URL   SQLAlchemy URL of the user store
  AUTH_ROLES     JSON list of roles, least privileged first
"""

import argparse
import asyncio
import sys
from typing import Optional

from auth.errors import AuthError
from auth.instance import AuthInstance, create_auth_instance_from_settings
from auth.store import SQLUserStore
from core.config import get_settings


def _parse_fields(pairs: list[str]) -> dict[str, str]:
    """Turn ["name=Bob", "team=ops"] into {"name": "Bob", "team": "ops"}."""
    fields: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {pair!r}")
        fields[key] = value
    return fields


async def _run(auth: AuthInstance, args: argparse.Namespace) -> None:
    if args.command == "create-user":
        user = await auth.create_user(args.email, args.password, _parse_fields(args.field))
        print(f"  Created user {user.email} (id={user.id}, role={auth.roles.name_of(user.role)})")
    elif args.command == "grant":
        await auth.add_role(args.email, args.role)
        print(f"  {args.email} is now {args.role}")
    elif args.command == "revoke":
        await auth.remove_role(args.email, args.role)
        print(f"  {args.email} reset to {auth.roles.lowest}")
    elif args.command == "delete-user":
        await auth.remove_user(args.email)
        print(f"  Deleted {args.email}")
    elif args.command == "login":
        result = await auth.log_in(args.email, args.password)
        print(result["token"])
    elif args.command == "roles":
        for rank, name in enumerate(auth.roles):
            print(f"  {rank}  {name}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tinyauth",
        description="Manage TinyAuth users and roles.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a user with the lowest role")
    create.add_argument("email")
    create.add_argument("password")
    create.add_argument(
        "--field",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Extra field to store on the user (repeatable)",
    )

    for name, help_text in (("grant", "Give a user a role"), ("revoke", "Reset a user to the lowest role")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("email")
        cmd.add_argument("role")

    delete = sub.add_parser("delete-user", help="Delete a user")
    delete.add_argument("email")

    login = sub.add_parser("login", help="Check credentials and print a bearer token")
    login.add_argument("email")
    login.add_argument("password")

    sub.add_parser("roles", help="List registered roles by rank")
    return parser


def main(argv: Optional[list[str]] = None, store: Optional[SQLUserStore] = None) -> int:
    args = build_parser().parse_args(argv)
    own_store = store is None
    if own_store:
        store = SQLUserStore(get_settings().database_url)
    try:
        auth = create_auth_instance_from_settings(store)
        asyncio.run(_run(auth, args))
    except (AuthError, argparse.ArgumentTypeError) as exc:
        print(f"  [!] {exc}", file=sys.stderr)
        return 1
    finally:
        if own_store:
            store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
