import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.config import Settings
from core.database import cleanup_old_untracked_jobs, get_processed_stats, get_unnotified_jobs, init_db
from core.mailbox import MailboxClient
from worker.pipeline import Pipeline, RunResult, build_pipeline

# Load `.env` for local/dev runs (override=True so updates take effect after restart).
load_dotenv(override=True)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger("worker")


def print_summary(result: RunResult) -> None:
    status = "OK" if result.success else "FAILED"
    print(f"Run {status}")
    print(f"  emails seen:      {result.emails_seen}")
    print(f"  emails processed: {result.emails_processed}")
    print(f"  jobs inserted:    {result.jobs_inserted}")
    print(f"  jobs discarded:   {result.jobs_discarded}")
    print(f"  jobs notified:    {result.jobs_notified}")
    if result.error:
        print(f"  error:            {result.error}")


async def run_forever(pipeline: Pipeline, interval: int) -> None:
    while True:
        try:
            await pipeline.run()
        except Exception as e:
            log.exception("Error during run", extra={"error": str(e)})

        log.info("Sleeping", extra={"seconds": interval})
        await asyncio.sleep(interval)


async def check_connections(settings: Settings) -> bool:
    ok = True
    try:
        init_db()
        stats = get_processed_stats()
        pending = get_unnotified_jobs(settings.min_relevance_score, limit=1000)
        print(f"Database: OK ({stats['emails']} emails recorded, {len(pending)} jobs pending notification)")
    except Exception as e:
        print(f"Database: FAILED ({e})")
        ok = False

    try:
        mailbox = MailboxClient.from_settings(settings)
        connected = await asyncio.to_thread(mailbox.test_connection)
    except Exception as e:
        log.error("Could not build Gmail client", extra={"error": str(e)})
        connected = False
    print(f"Gmail: {'OK' if connected else 'FAILED'}")
    ok = ok and connected

    print(f"OpenAI: {'configured' if settings.openai_api_key else 'MISSING OPENAI_API_KEY'}")
    print(f"Telegram: {'configured' if settings.telegram_bot_token else 'disabled'}")
    return ok and bool(settings.openai_api_key)


async def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Job alert mailbox worker")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--once", action="store_true", help="run a single cycle and exit")
    mode.add_argument("--check", action="store_true", help="test database and Gmail connectivity")
    mode.add_argument("--notify-pending", action="store_true", help="resend relevant jobs not yet notified")
    mode.add_argument("--summary", action="store_true", help="send the daily summary of the last 24 hours")
    mode.add_argument("--cleanup", action="store_true", help="delete old jobs that nobody tracks")
    args = parser.parse_args(argv)

    settings = Settings.from_env()

    if args.check:
        return 0 if await check_connections(settings) else 1

    init_db()

    if args.cleanup:
        report = cleanup_old_untracked_jobs(settings.job_retention_days)
        print(f"Deleted {report['deleted']} untracked job(s) older than {settings.job_retention_days} day(s)")
        for source, count in sorted(report["by_source"].items()):
            print(f"  {source}: {count}")
        return 0

    pipeline = build_pipeline(settings)

    if args.once:
        result = await pipeline.run()
        print_summary(result)
        return 0 if result.success else 1

    if args.notify_pending:
        sent = await pipeline.notify_pending()
        print(f"Notified {sent} pending job(s)")
        return 0

    if args.summary:
        reached = await pipeline.send_summary()
        print(f"Daily summary sent to {reached} user(s)")
        return 0

    await run_forever(pipeline, settings.check_interval)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
