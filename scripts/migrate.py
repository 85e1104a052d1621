#!/usr/bin/env python
"""Migration CLI: list, apply, rollback schema migrations for the accounts DB.

Usage (examples):

python scripts/migrate.py --db ~/.bybit-cli/accounts.db list
python scripts/migrate.py --db ~/.bybit-cli/accounts.db apply
python scripts/migrate.py --db ~/.bybit-cli/accounts.db rollback --version 2
python scripts/migrate.py --db ~/.bybit-cli/accounts.db rollback --last
"""
import argparse
import sqlite3
import sys
from pathlib import Path

# Ensure project root is on sys.path so `bbcli` is importable when running as a script.
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from bbcli.db_migrations import MIGRATIONS, applied_versions, apply_migrations, pending_versions, rollback_last, rollback_migration


def list_migrations(conn):
    applied = applied_versions(conn)
    print("Available migrations:")
    for v in sorted(MIGRATIONS.keys()):
        status = "applied" if v in applied else "pending"
        when = applied.get(v, "-")
        print(f"  {v}: {status} (applied_at={when})")


def confirm(prompt: str) -> bool:
    try:
        answer = input(prompt)
    except (EOFError, BrokenPipeError):
        # Non-interactive or piped stdin; auto-confirm
        return True
    return answer.strip().lower() == "yes"


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", required=True, help="Path to accounts DB file")
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("list")
    apply_p = sub.add_parser("apply")
    apply_p.add_argument("--dry-run", action="store_true", help="Show pending migrations without applying them")

    rb = sub.add_parser("rollback")
    rb.add_argument("--version", type=int, help="Rollback a specific migration version")
    rb.add_argument("--last", action="store_true", help="Rollback the last applied migration")
    rb.add_argument("--dry-run", action="store_true", help="Show which migration would be rolled back without performing it")
    rb.add_argument("--yes", action="store_true", help="Do not prompt for confirmation when rolling back")

    args = parser.parse_args()
    db = Path(args.db).expanduser()
    db.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db), timeout=30)
    try:
        run(parser, args, conn)
    finally:
        conn.close()


def run(parser, args, conn):
    if args.cmd == "list":
        list_migrations(conn)
        return

    if args.cmd == "apply":
        if args.dry_run:
            pending = pending_versions(conn)
            if pending:
                print("Pending migrations:", pending)
            else:
                print("No pending migrations; database up-to-date.")
            return

        applied = apply_migrations(conn)
        if applied:
            print("Applied migrations:", applied)
        else:
            print("No migrations applied; database up-to-date.")
        return

    if args.cmd == "rollback":
        if args.version:
            if args.dry_run:
                print(f"Would rollback migration {args.version} (dry-run)")
                return
            if not args.yes and not confirm(
                f"Are you sure you want to rollback migration {args.version}? This may DROP stored accounts. Type 'yes' to continue: "
            ):
                print("Aborted.")
                return
            rollback_migration(conn, args.version)
            print(f"Rolled back migration {args.version}")
            return
        if args.last:
            applied = applied_versions(conn)
            if not applied:
                print("No applied migrations to rollback")
                return
            last = max(applied)
            if args.dry_run:
                print(f"Would rollback migration {last} (dry-run)")
                return
            if not args.yes and not confirm(
                f"Are you sure you want to rollback the last migration {last}? This may DROP stored accounts. Type 'yes' to continue: "
            ):
                print("Aborted.")
                return

            v = rollback_last(conn)
            print(f"Rolled back migration {v}")
            return

    parser.print_help()


if __name__ == "__main__":
    main()
