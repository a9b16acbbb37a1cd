# Quick reference commands (run from repo root). These are comments only; copy/paste as needed.

# Install the project with test dependencies
# python -m pip install -e ".[test]"

# Run the full test suite (DB-bound tests skip unless DATABASE_URL is set)
# python -m pytest

# Run focused test files
# python -m pytest tests/test_mailbox_body.py tests/test_gmail_client.py
# python -m pytest tests/test_dedup.py tests/test_candidates.py
# python -m pytest tests/test_pipeline.py
# python -m pytest tests/test_stage_reorder.py tests/test_api_routes.py
# python -m pytest tests/test_kanban_client.py

# Run the DB-bound tests against a throwaway Postgres
# DATABASE_URL=postgresql://localhost/jobdigest_test python -m pytest tests/test_db_stores.py

# Start the API locally (with env vars loaded)
# python -m dotenv run -- python -m uvicorn app.api:app --reload

# Run the worker loop, a single cycle, or a connectivity check
# python -m dotenv run -- python -m worker.main
# python -m dotenv run -- python -m worker.main --once
# python -m dotenv run -- python -m worker.main --check

# Resend relevant jobs that were not delivered yet
# python -m dotenv run -- python -m worker.main --notify-pending

# Inspect the database (example queries)
# python -m scripts.db_shell "SELECT message_id, jobs_extracted, deleted, processed_at FROM processed_emails ORDER BY id DESC LIMIT 10"
# python -m scripts.db_shell "SELECT id, title, company, relevance_score FROM jobs ORDER BY created_at DESC LIMIT 5"

# Link a user to a Telegram chat, or wipe all data
# python -m scripts.manage_users add someone@example.com --telegram 123456789
# python -m scripts.reset_db --yes
