"""
Create users and link them to a Telegram chat for job notifications.

Usage:
  python -m scripts.manage_users list
  python -m scripts.manage_users add someone@example.com [--telegram CHAT_ID]
  python -m scripts.manage_users telegram USER_ID CHAT_ID
  python -m scripts.manage_users delete USER_ID
"""
from __future__ import annotations

import argparse

from dotenv import load_dotenv

from core.database import (
    create_user,
    delete_user_data,
    get_conn,
    get_user_by_email,
    init_db,
    set_telegram_chat_id,
)

load_dotenv(override=True)


def list_users() -> None:
    with get_conn() as conn:
        cur = conn.cursor()
        cur.execute("SELECT id, email, telegram_chat_id, active, created_at FROM users ORDER BY id")
        rows = cur.fetchall()
    for row in rows:
        print(dict(row))


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list")
    add = sub.add_parser("add")
    add.add_argument("email")
    add.add_argument("--telegram", default=None)
    tg = sub.add_parser("telegram")
    tg.add_argument("user_id", type=int)
    tg.add_argument("chat_id")
    rm = sub.add_parser("delete")
    rm.add_argument("user_id", type=int)
    args = parser.parse_args()

    init_db()

    if args.command == "list":
        list_users()
    elif args.command == "add":
        if get_user_by_email(args.email):
            raise SystemExit(f"User {args.email} already exists")
        user_id = create_user(args.email, telegram_chat_id=args.telegram)
        print(f"Created user id={user_id}")
    elif args.command == "telegram":
        set_telegram_chat_id(args.user_id, args.chat_id)
        print(f"Linked user {args.user_id} to chat {args.chat_id}")
    elif args.command == "delete":
        if delete_user_data(args.user_id):
            print(f"Deleted user {args.user_id} and their tracking data")
        else:
            print(f"No user with id {args.user_id}")


if __name__ == "__main__":
    main()
