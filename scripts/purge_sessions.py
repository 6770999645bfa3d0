#!/usr/bin/env python3
"""Delete expired session rows.

Expired sessions are already ignored (and deleted) when presented; this sweeps
the ones whose browsers never came back. Safe to run from cron.

Usage:
  python scripts/purge_sessions.py
"""

import sys
from pathlib import Path

from sqlalchemy import delete

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.portal.models import UserSession
from app.portal.utils import utcnow
from scripts._db_utils import resolve_db_url, script_session


def purge(*, database_url: str | None = None) -> int:
    with script_session(resolve_db_url(database_url)) as s:
        result = s.execute(delete(UserSession).where(UserSession.expires_at <= utcnow()))
        removed = result.rowcount or 0
    print(f"Purged {removed} expired session(s).")
    return removed


def main() -> None:
    purge()


if __name__ == "__main__":
    main()
