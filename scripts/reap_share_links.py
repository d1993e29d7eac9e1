"""Delete expired share links.

Meant for cron; consumption never depends on it since expired links are
already rejected at consume time.

Usage:
    python -m scripts.reap_share_links [--database-url sqlite:///...]
"""

from __future__ import annotations
import argparse
import os
import sys

from directory_hub.config.settings import DEFAULT_DATABASE_URL
from directory_hub.core.share_links import ShareTokenManager
from directory_hub.db import create_session_factory


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Purge expired share links")
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args(argv)

    url = args.database_url or os.environ.get("DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL
    manager = ShareTokenManager(create_session_factory(url))
    removed = manager.purge_expired()
    print(f"[reaper] Removed {removed} expired share link(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
