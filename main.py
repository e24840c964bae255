#!/usr/bin/env python3
"""
Keyward -- credential and session-lifecycle service, admin CLI.

Usage:
  python main.py create-admin
  python main.py sync
  python main.py sync --file users.csv
  python main.py export --file users.csv
  python main.py list-users
  python main.py sessions --email ada@example.com
  python main.py purge-tokens

All commands read the same settings as the API (DATABASE_URL, MIRROR_PATH,
JWT_SECRET, ...; see core/config.py). Set DEBUG=true to run without signing
secrets configured.
"""

import argparse
import logging
import sys
from typing import Optional

from auth.bootstrap import AuthComponents, build_components, create_default_admin
from auth.errors import AuthError
from core.config import get_settings
from mirror.store import MirrorFile
from mirror.sync import reconcile


def _mirror_for(components: AuthComponents, path: Optional[str]) -> MirrorFile:
    return MirrorFile(path) if path else components.mirror


def cmd_create_admin(components: AuthComponents, args: argparse.Namespace) -> int:
    settings = get_settings()
    user_id = create_default_admin(components.store, settings, components.mirror)
    if user_id is None:
        print("  Users already exist -- default admin not created.")
    else:
        print(f"  Created default admin {settings.default_admin_email} (id {user_id}).")
    return 0


def cmd_sync(components: AuthComponents, args: argparse.Namespace) -> int:
    mirror = _mirror_for(components, args.file)
    report = reconcile(components.store, mirror.read_records())
    print(f"  {report.created} created, {report.skipped} skipped, {len(report.errors)} error(s).")
    for err in report.errors:
        print(f"  [!] {err.email}: {err.error}")
    return 1 if report.errors else 0


def cmd_export(components: AuthComponents, args: argparse.Namespace) -> int:
    mirror = _mirror_for(components, args.file)
    users = components.store.list_all()
    if not mirror.export_users(users):
        print(f"  [!] Could not write {mirror.path}.")
        return 1
    print(f"  Exported {len(users)} user(s) to {mirror.path}.")
    return 0


def cmd_list_users(components: AuthComponents, args: argparse.Namespace) -> int:
    users = components.store.list_all()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'ID':>4}  {'EMAIL':<32} {'ROLE':<6} {'STATUS':<8} {'FAILED':>6}  LOCKED UNTIL")
    for u in users:
        print(
            f"  {u.id:>4}  {u.email:<32} {u.role:<6} {u.status:<8} {u.failed_login_count:>6}  {u.locked_until or '-'}"
        )
    return 0


def cmd_sessions(components: AuthComponents, args: argparse.Namespace) -> int:
    user = components.store.find_by_email(args.email)
    if user is None:
        print(f"  [!] No user with email {args.email}.")
        return 1
    records = components.ledger.list_for_user(user.id)
    print(f"  {len(records)} active refresh token(s) for {user.email}.")
    for r in records:
        print(f"  #{r.id}  issued {r.created_at}  expires {r.expires_at}")
    return 0


def cmd_purge_tokens(components: AuthComponents, args: argparse.Namespace) -> int:
    purged = components.ledger.purge_expired()
    print(f"  Purged {purged} expired refresh token(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="keyward",
        description="Administer the Keyward credential store and bulk user mirror.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p = sub.add_parser("create-admin", help="Create the default admin if no users exist")
    p.set_defaults(func=cmd_create_admin)

    p = sub.add_parser("sync", help="Import users from the mirror file (add-only)")
    p.add_argument("--file", metavar="PATH", help="Mirror CSV to read (default: MIRROR_PATH)")
    p.set_defaults(func=cmd_sync)

    p = sub.add_parser("export", help="Write every stored user to the mirror file")
    p.add_argument("--file", metavar="PATH", help="Mirror CSV to write (default: MIRROR_PATH)")
    p.set_defaults(func=cmd_export)

    p = sub.add_parser("list-users", help="List users with their lockout state")
    p.set_defaults(func=cmd_list_users)

    p = sub.add_parser("sessions", help="List a user's unexpired refresh tokens")
    p.add_argument("--email", required=True, help="Email of the user to inspect")
    p.set_defaults(func=cmd_sessions)

    p = sub.add_parser("purge-tokens", help="Delete expired refresh-token ledger rows")
    p.set_defaults(func=cmd_purge_tokens)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    components = build_components(get_settings())
    try:
        return args.func(components, args)
    except AuthError as e:
        print(f"  [!] {e.message}")
        return 1
    finally:
        components.close()


if __name__ == "__main__":
    sys.exit(main())
