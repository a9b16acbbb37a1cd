"""
Empty every jobdigest table and reseed the system stages.

Usage:
  python -m scripts.reset_db --yes
"""
from __future__ import annotations

import sys

from dotenv import load_dotenv

from core.db.schema import init_db, truncate_all

load_dotenv(override=True)


def main() -> None:
    if "--yes" not in sys.argv[1:]:
        raise SystemExit("Refusing to wipe the database without --yes")
    init_db()
    truncate_all()
    print("[reset] all tables cleared; system stages reseeded.")


if __name__ == "__main__":
    main()
