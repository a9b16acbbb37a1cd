"""
Quick helper to run a query against the jobdigest Postgres database.

Usage:
  python -m scripts.db_shell                                   # table row counts
  python -m scripts.db_shell "SELECT * FROM job_stages"        # run a custom query
"""
from __future__ import annotations

import sys

from dotenv import load_dotenv

from core.db.base import get_conn
from core.db.schema import TABLES

load_dotenv(override=True)


def table_counts() -> str:
    return " UNION ALL ".join(
        f"SELECT '{name}' AS name, COUNT(*) AS row_count FROM {name}" for name in TABLES
    )


def main() -> None:
    query = " ".join(sys.argv[1:]).strip() or table_counts()

    try:
        conn = get_conn()
    except RuntimeError as exc:
        raise SystemExit(str(exc)) from exc

    try:
        cur = conn.cursor()
        cur.execute(query)
        if query.lstrip().lower().startswith(("select", "with", "show")):
            for row in cur.fetchall():
                print(dict(row))
        else:
            conn.commit()
            print(f"OK ({cur.rowcount} row(s) affected)")
    except Exception as exc:
        raise SystemExit(f"Error running query: {exc}") from exc
    finally:
        conn.close()


if __name__ == "__main__":
    main()
