"""
Entry point to run the mailbox worker loop (same flags as `python -m worker.main`).
"""
import asyncio
import sys

from worker.main import main as worker_main


if __name__ == "__main__":
    sys.exit(asyncio.run(worker_main()))
