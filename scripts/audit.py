"""Audit trail verification and listing for operators.

Usage:
    python -m scripts.audit verify
    python -m scripts.audit list --kind contact --limit 20
"""

from __future__ import annotations
import argparse
import json
import os
import sys

from directory_hub.config.settings import DEFAULT_DATABASE_URL, _load_secret_from_file
from directory_hub.core.audit import AuditTrail
from directory_hub.db import create_session_factory


def build_trail(database_url: str | None = None, signing_key: str | None = None) -> AuditTrail:
    """Audit trail bound to the configured database and signing key."""
    url = database_url or os.environ.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL
    if signing_key is None:
        signing_key = _load_secret_from_file("audit_log_signing_key", "AUDIT_LOG_SIGNING_KEY") or ""
    return AuditTrail(create_session_factory(url), signing_key)


def main(argv: list[str] | None = None) -> int:
    """Command-line entry point. Returns the process exit code."""
    parser = argparse.ArgumentParser(description="Directory hub audit trail")
    parser.add_argument("--database-url", default=None)
    sub = parser.add_subparsers(dest="cmd")

    sub.add_parser("verify", help="Check HMAC signatures of every entry")

    sl = sub.add_parser("list", help="Print recent entries as JSON lines")
    sl.add_argument("--kind", default=None)
    sl.add_argument("--resource-id", default=None)
    sl.add_argument("--limit", type=int, default=50)

    args = parser.parse_args(argv)
    trail = build_trail(args.database_url)

    if args.cmd == "verify":
        total, valid = trail.verify_entries()
        print(f"Audit trail: {valid}/{total} entries with valid signatures")
        return 0 if total == valid else 1
    if args.cmd == "list":
        for entry in trail.list_entries(args.kind, args.resource_id, args.limit):
            print(json.dumps(entry, sort_keys=True))
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    sys.exit(main())
