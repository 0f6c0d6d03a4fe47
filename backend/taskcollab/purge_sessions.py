"""
Expired session sweep.

What it does:
- Deletes rows from ``sessions`` whose ``expires_at`` is in the past.
- With --dry-run, only reports how many rows would be deleted.

Meant to be run from cron / a scheduled task:
    taskcollab-purge-sessions
    python -m taskcollab.purge_sessions --dry-run
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone
from typing import Callable, Sequence

from sqlalchemy.orm import Session

from taskcollab.core.database import SessionLocal
from taskcollab.models.session import AuthSession
from taskcollab.services.sessions import SessionStore

logger = logging.getLogger(__name__)


def count_expired(db: Session, now: datetime) -> int:
    return db.query(AuthSession).filter(AuthSession.expires_at < now).count()


def main(argv: Sequence[str] | None = None, *, session_factory: Callable[[], Session] = SessionLocal) -> int:
    parser = argparse.ArgumentParser(description="Delete expired auth sessions.")
    parser.add_argument("--dry-run", action="store_true", help="Report the count without deleting.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    now = datetime.now(timezone.utc)

    with session_factory() as db:
        if args.dry_run:
            count = count_expired(db, now)
            logger.info("[dry-run] expired sessions: %s", count)
            print(f"Would delete {count} expired session(s).")
            return 0

        count = SessionStore(db).delete_expired(now)

    logger.info("[done] deleted expired sessions: %s at %s", count, now.isoformat())
    print(f"Deleted {count} expired session(s).")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
