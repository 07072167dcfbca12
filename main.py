#!/usr/bin/env python3
"""
Sentinel -- operator command line.

Usage:
  python main.py create-admin --email admin@example.com --name "Site Admin"
  python main.py list-blocked
  python main.py unblock 203.0.113.7

create-admin prompts for the password twice unless --password-stdin is
given, in which case the first line of standard input is used (for
provisioning scripts). Passwords are never accepted as arguments because
they would end up in shell history and the process list.

Configuration comes from the same environment / .env as the API
(DATABASE_URL, SECRET_KEY, BCRYPT_ROUNDS, ...).
"""

from __future__ import annotations

import argparse
import getpass
import sys

from auth.errors import AuthError
from auth.service import build_auth
from core.config import Settings, get_settings


def _read_password(from_stdin: bool) -> str | None:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def main(argv: list[str] | None = None, settings: Settings | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="Sentinel operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command")

    create = sub.add_parser("create-admin", help="Create a verified admin account.")
    create.add_argument("--email", required=True, help="Admin email address.")
    create.add_argument("--name", default="Administrator", help="Display name.")
    create.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of standard input instead of prompting.",
    )

    sub.add_parser("list-blocked", help="List blocked network addresses.")

    unblock = sub.add_parser("unblock", help="Remove an address from the block list.")
    unblock.add_argument("address", help="IPv4 or IPv6 address to unblock.")

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    components = build_auth(settings or get_settings())
    service = components.service
    try:
        if args.command == "create-admin":
            password = _read_password(args.password_stdin)
            if not password or len(password) < 8:
                print("  [!] Password must be at least 8 characters.")
                return 1
            user = service.create_admin(args.email, password, name=args.name)
            print(f"Created admin {user.email} (id={user.id}, agent code {user.agent_code}).")
            return 0

        if args.command == "list-blocked":
            entries = service.list_blocked()
            if not entries:
                print("No blocked addresses.")
            for entry in entries:
                print(f"{entry.address:<40} {entry.blocked_at.isoformat()}  {entry.reason}")
            return 0

        if args.command == "unblock":
            service.unblock_address(args.address)
            print(f"Unblocked {args.address}.")
            return 0
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        components.close()

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
