#!/usr/bin/env python3
"""
boardkeep -- administrative CLI for the session and account store.

Usage:
  python main.py init
  python main.py invite
  python main.py invite --uses 5 --ttl 86400
  python main.py invite --creator alice
  python main.py sweep

Configuration is read from the environment / .env (see core/config.py):
  DATABASE_URL     SQLAlchemy URL of the store (default: sqlite file beside the code)
  OWNER_USERNAME   Bootstrap owner account created by `init`
  OWNER_PASSWORD   Its password
"""

import argparse
import logging
import sys

from api.main import build_service
from auth.errors import AuthError
from core.config import get_settings


def _cmd_init(args: argparse.Namespace) -> int:
    settings = get_settings()
    service = build_service(settings)
    try:
        if not settings.owner_username:
            print("  Tables ready. No OWNER_USERNAME set; no owner account created.")
            return 0
        created = service.ensure_owner(settings.owner_username, settings.owner_password)
        state = "created" if created else "already exists"
        print(f"  Tables ready. Owner '{settings.owner_username}' {state}.")
        return 0
    finally:
        service.store.close()


def _cmd_invite(args: argparse.Namespace) -> int:
    settings = get_settings()
    creator = args.creator or settings.owner_username
    if not creator:
        print("  [!] No --creator given and OWNER_USERNAME is not set.")
        return 2
    service = build_service(settings)
    try:
        invite = service.create_invite(creator, remaining=args.uses, ttl=args.ttl)
    finally:
        service.store.close()
    # The only place an invite token is ever printed.
    print(invite.token)
    return 0


def _cmd_sweep(args: argparse.Namespace) -> int:
    service = build_service(get_settings())
    try:
        removed = service.sweep()
    finally:
        service.store.close()
    print(f"  Removed {removed} expired session(s).")
    return 0


def _positive_int(value: str) -> int:
    n = int(value)
    if n < 1:
        raise argparse.ArgumentTypeError("must be a positive integer")
    return n


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="boardkeep",
        description="Manage the boardkeep session and account store.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init", help="Create tables and the bootstrap owner account.")
    p_init.set_defaults(func=_cmd_init)

    p_invite = sub.add_parser("invite", help="Mint an invite token and print it.")
    p_invite.add_argument("--uses", type=_positive_int, default=1, help="Signups the token allows (default: 1).")
    p_invite.add_argument("--ttl", type=_positive_int, default=None, help="Lifetime in seconds (default: never expires).")
    p_invite.add_argument("--creator", default="", help="Username recorded as the creator (default: OWNER_USERNAME).")
    p_invite.set_defaults(func=_cmd_invite)

    p_sweep = sub.add_parser("sweep", help="Delete expired sessions now.")
    p_sweep.set_defaults(func=_cmd_sweep)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.getLogger().setLevel(logging.WARNING)
    try:
        return args.func(args)
    except AuthError as exc:
        print(f"  [!] {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
