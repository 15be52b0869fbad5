"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# Paths
PROJECT_ROOT = Path(__file__).parent

# Postgres (empty means the in-memory store)
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Slack (empty means log-only notifications)
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL", "")
SLACK_TIMEOUT = float(os.getenv("SLACK_TIMEOUT", "5.0"))

# Notification dispatch
NOTIFY_MAX_WORKERS = int(os.getenv("NOTIFY_MAX_WORKERS", "4"))
NOTIFY_RETRIES = int(os.getenv("NOTIFY_RETRIES", "2"))
NOTIFY_BACKOFF = float(os.getenv("NOTIFY_BACKOFF", "0.5"))

# When true, a failed notification for an updated status fails the request
STRICT_UPDATE_NOTIFICATIONS = _flag("STRICT_UPDATE_NOTIFICATIONS", "true")

# Compare-and-swap retries per environment before giving up
MAX_CAS_ATTEMPTS = int(os.getenv("MAX_CAS_ATTEMPTS", "3"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
