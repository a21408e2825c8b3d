"""
Mindmate CLI - operator tooling for the offline sync queue.

Usage:
    mindmate keygen
    mindmate queue status [--json]
    mindmate queue flush [--force]
    mindmate queue dead-letters [--json]
    mindmate queue requeue [ID ...]

Client settings come from the environment:
    MINDMATE_HOME          client state directory (default ~/.mindmate)
    MINDMATE_BACKEND_URL   backend root URL
    MINDMATE_AUTH_TOKEN    bearer token
"""

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from mindmate.client import MindmateClient, open_client
from mindmate.crypto import generate_key
from mindmate.errors import MindmateError, StorageError, TransportError

# Set up logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

DEFAULT_BACKEND_URL = "http://localhost:8000"


def get_home() -> Path:
    """Client state directory."""
    return Path(os.environ.get("MINDMATE_HOME") or Path.home() / ".mindmate")


def get_client() -> MindmateClient:
    backend_url = os.environ.get("MINDMATE_BACKEND_URL") or DEFAULT_BACKEND_URL
    auth_token = os.environ.get("MINDMATE_AUTH_TOKEN") or ""
    return open_client(get_home(), backend_url, auth_token)


def cmd_keygen(args):
    """Print a fresh server encryption key."""
    print(generate_key())


def cmd_queue(args, client: MindmateClient):
    """Handle queue subcommands."""
    if args.queue_action == "status":
        status = client.store.queue_status()
        if args.json:
            print(json.dumps(status, indent=2, default=str))
            return
        print("Sync Queue")
        print("=" * 40)
        print(f"Pending:      {status['pending']}")
        print(f"Dead letters: {status['dead_letter']}")
        for kind, count in sorted(status["by_type"].items()):
            print(f"  {kind}: {count}")
        print(f"Last sync:    {status['last_sync_time'] or 'never'}")

    elif args.queue_action == "flush":
        if client.queue.is_empty():
            print("✓ Nothing to sync")
            return
        try:
            outcome = client.queue.flush(force=args.force)
        except TransportError as e:
            print(f"✗ Sync failed, changes stay queued: {e}")
            sys.exit(1)
        if outcome is None:
            remaining = client.queue.backoff_remaining()
            print(f"ℹ Flush skipped (backing off {remaining:.0f}s); use --force to retry now")
            return
        print(f"✓ Synced: {outcome.processed} processed, {outcome.failed} failed")
        for error in outcome.errors:
            print(f"  ✗ {error.change_id}: {error.reason}")

    elif args.queue_action == "dead-letters":
        entries = client.queue.dead_letters()
        if args.json:
            print(json.dumps(
                [
                    {
                        "changeId": e.change_id,
                        "type": e.type,
                        "retryCount": e.retry_count,
                        "lastError": e.last_error,
                        "queuedAt": e.queued_at,
                    }
                    for e in entries
                ],
                indent=2,
                default=str,
            ))
            return
        if not entries:
            print("No dead letters.")
            return
        for e in entries:
            print(f"{e.change_id}  {e.type}  retries={e.retry_count}  {e.last_error or ''}")

    elif args.queue_action == "requeue":
        count = client.queue.requeue_dead_letters(args.ids or None)
        print(f"✓ Requeued {count} entries")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mindmate",
        description="Mindmate offline sync tooling",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("keygen", help="Generate a server encryption key")

    p_queue = subparsers.add_parser("queue", help="Offline sync queue")
    queue_sub = p_queue.add_subparsers(dest="queue_action", required=True)

    q_status = queue_sub.add_parser("status", help="Show queue counts")
    q_status.add_argument("--json", "-j", action="store_true")

    q_flush = queue_sub.add_parser("flush", help="Send queued changes to the backend")
    q_flush.add_argument("--force", "-f", action="store_true",
                         help="Ignore backoff and offline state")

    q_dead = queue_sub.add_parser("dead-letters", help="List permanently failed changes")
    q_dead.add_argument("--json", "-j", action="store_true")

    q_requeue = queue_sub.add_parser("requeue", help="Move dead letters back to pending")
    q_requeue.add_argument("ids", nargs="*", help="Change ids (default: all)")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "keygen":
        cmd_keygen(args)
        return

    try:
        client = get_client()
    except StorageError as e:
        logger.error(f"Failed to open client state: {e}")
        sys.exit(1)

    try:
        if args.command == "queue":
            cmd_queue(args, client)
    except MindmateError as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
    finally:
        client.close()


if __name__ == "__main__":
    main()
