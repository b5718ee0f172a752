"""
Seed the weekly availability template.

Usage:
    alembic -c backend/alembic.ini upgrade head
    python scripts/seed_availability.py [--force]

Existing rows are left untouched unless --force is given.
"""

import argparse

from coachbook.database import SessionLocal
from coachbook.models import Availability


# ======================================================
# DEFAULT BUSINESS HOURS (0 = Monday)
# ======================================================

WEEKDAY_HOURS = ("10:00", "18:30")
WEEKEND_HOURS = ("12:00", "14:30")

DEFAULT_TEMPLATE = {
    day: WEEKDAY_HOURS if day < 5 else WEEKEND_HOURS
    for day in range(7)
}


# ======================================================
# MAIN LOGIC
# ======================================================

def seed(db, force: bool = False) -> int:
    """Insert (or with force, overwrite) one row per weekday. Returns rows written."""
    existing = {row.day_of_week: row for row in db.query(Availability).all()}
    written = 0

    for day, (start, end) in DEFAULT_TEMPLATE.items():
        row = existing.get(day)
        if row is None:
            db.add(Availability(day_of_week=day, start_time=start, end_time=end, is_available=1))
            written += 1
        elif force:
            row.start_time, row.end_time, row.is_available = start, end, 1
            written += 1

    db.commit()
    return written


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--force", action="store_true", help="overwrite existing rows")
    args = parser.parse_args()

    db = SessionLocal()
    try:
        written = seed(db, force=args.force)
    finally:
        db.close()

    if written:
        print(f"[SEED] Availability template: {written} day(s) written")
    else:
        print("[SEED] Availability template already present, nothing to do")


if __name__ == "__main__":
    main()
