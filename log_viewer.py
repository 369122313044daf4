#!/usr/bin/env python3
"""
log_viewer.py - Browse the setops SQLite run log from the terminal.

Usage:
    setops-log [--db setops.db] [--sessions] [--session ID | --current]
               [--tag err|warn|ok|info] [--limit 500] [--clear ID]

Without --sessions, prints log entries (oldest first) as
    time  tag   operation  message
with optional session and tag filters. --current picks the newest session.
"""

import argparse
import sys
from pathlib import Path

from db_logger import DB_NAME, TAGS, clear_session, get_entries, get_sessions


def format_entry(entry: dict) -> str:
    ts = entry["timestamp"][11:19]
    return f"{ts}  {entry['tag']:<4}  {entry['operation'] or '-':<20}  {entry['message']}"


def format_session(session: dict) -> str:
    ts = session["started_at"][:19].replace("T", " ")
    return f"{ts}  [{session['id']}]  {session['argv'] or ''}"


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Show sessions and log entries recorded by setops --log-db."
    )
    parser.add_argument("--db", "-d", default=DB_NAME,
                        help=f"Run log database (default: ./{DB_NAME}).")
    parser.add_argument("--sessions", action="store_true",
                        help="List sessions instead of entries.")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--session", "-s", default=None,
                       help="Only show entries of this session id.")
    group.add_argument("--current", action="store_true",
                       help="Only show entries of the newest session.")
    parser.add_argument("--tag", "-t", choices=TAGS, default=None,
                        help="Only show entries with this tag.")
    parser.add_argument("--limit", "-n", type=int, default=500,
                        help="Maximum number of rows (default: 500).")
    parser.add_argument("--clear", metavar="ID", default=None,
                        help="Delete a session and its entries.")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if not Path(args.db).exists():
        print(f"ERROR: no run log at \"{args.db}\"", file=sys.stderr)
        return 1

    if args.clear:
        removed = clear_session(args.db, args.clear)
        print(f"Cleared session {args.clear} ({removed} entries)")
        return 0

    if args.sessions:
        for session in get_sessions(args.db, limit=args.limit):
            print(format_session(session))
        return 0

    session_id = args.session
    if args.current:
        newest = get_sessions(args.db, limit=1)
        if not newest:
            return 0
        session_id = newest[0]["id"]

    entries = get_entries(args.db, session_id=session_id, tag=args.tag, limit=args.limit)
    for entry in entries:
        print(format_entry(entry))
    return 0


if __name__ == "__main__":
    sys.exit(main())
