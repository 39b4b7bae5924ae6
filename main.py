#!/usr/bin/env python3
"""
htpasswd-store -- Manage and check htpasswd/htgroup credential files.

Usage:
  python main.py adduser alice
  python main.py adduser alice --password s3cret
  python main.py addgroups alice admins dev
  python main.py check alice --password s3cret
  python main.py --file ./htpasswd --group-file ./htgroup check alice

Environment variables:
  HTPASSWD_FILE         Path to the htpasswd file (required unless --file is given).
  HTPASSWD_GROUP_FILE   Path to the htgroup file (required unless --group-file is given).
  HTPASSWD_MAX_USERS    Optional cap on registered users.
  HTPASSWD_ALGORITHM    crypt (default), bcrypt, md5 or sha1 for new users.
"""

import argparse
import asyncio
import getpass
import logging
import sys
from typing import Optional

from pydantic import ValidationError as SettingsError

from core.config import Settings
from core.errors import StoreError
from credstore.store import HtpasswdStore


def _build_settings(args: argparse.Namespace) -> Optional[Settings]:
    """Build Settings from the environment, with CLI path overrides applied."""
    overrides = {}
    if args.file:
        overrides["file"] = args.file
    if args.group_file:
        overrides["group_file"] = args.group_file
    try:
        return Settings(**overrides)
    except SettingsError as e:
        for err in e.errors():
            print(f"  [!] Configuration error: {err['msg']}")
        return None


def _password(args: argparse.Namespace) -> str:
    if args.password is not None:
        return args.password
    return getpass.getpass(f"Password for {args.user}: ")


async def _run(store: HtpasswdStore, args: argparse.Namespace) -> int:
    if args.command == "adduser":
        await store.add_user(args.user, _password(args))
        print(f"  User '{args.user}' added to {store.path}")
        return 0

    if args.command == "addgroups":
        if await store.add_user_to_groups(args.user, args.groups):
            print(f"  '{args.user}' added to: {', '.join(args.groups)}")
        else:
            print(f"  '{args.user}' is already in every listed group.")
        return 0

    # check
    groups = await store.authenticate(args.user, _password(args))
    if groups is False:
        print("  [!] Authentication failed.")
        return 1
    print(f"  OK -- groups: {' '.join(groups)}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="htpasswd-store",
        description="Manage and check htpasswd/htgroup credential files.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  HTPASSWD_FILE=htpasswd HTPASSWD_GROUP_FILE=htgroup python main.py adduser alice
  python main.py --file htpasswd --group-file htgroup addgroups alice admins
  python main.py --file htpasswd --group-file htgroup check alice --password s3cret
        """,
    )
    parser.add_argument("--file", metavar="PATH", help="htpasswd file (overrides HTPASSWD_FILE)")
    parser.add_argument("--group-file", metavar="PATH", help="htgroup file (overrides HTPASSWD_GROUP_FILE)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log store activity to stderr")

    sub = parser.add_subparsers(dest="command", required=True)

    adduser = sub.add_parser("adduser", help="Register a new user")
    adduser.add_argument("user")
    adduser.add_argument("--password", help="Password (prompted for when omitted)")

    addgroups = sub.add_parser("addgroups", help="Add a user to one or more groups")
    addgroups.add_argument("user")
    addgroups.add_argument("groups", nargs="+", metavar="GROUP")

    check = sub.add_parser("check", help="Verify a password and print the user's groups")
    check.add_argument("user")
    check.add_argument("--password", help="Password (prompted for when omitted)")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    settings = _build_settings(args)
    if settings is None:
        return 1

    store = HtpasswdStore(settings)
    try:
        return asyncio.run(_run(store, args))
    except StoreError as e:
        print(f"  [!] {e}")
        return 1
    except OSError as e:
        print(f"  [!] Could not access credential files: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
