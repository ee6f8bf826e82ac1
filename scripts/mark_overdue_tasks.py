#!/usr/bin/env python3
"""
Flip open tasks whose due date has passed to OVER_DUE.

Intended for a scheduled job (cron / platform job):
    python scripts/mark_overdue_tasks.py
"""

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import app.workhub.modules.projects.models  # noqa: F401
from app.workhub.modules.tasks.service import mark_overdue_tasks
from scripts._db_utils import script_session


def main() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///workhub.db").strip()
    with script_session(db_url) as s:
        updated = mark_overdue_tasks(s)
    print(f"Marked {updated} task(s) overdue.", flush=True)


if __name__ == "__main__":
    main()
