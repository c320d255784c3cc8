# backend/settings/test.py
"""
PATH: backend/settings/test.py

TEST SETTINGS
- In-memory SQLite
- Migrations disabled (tables are created straight from the models)
- Quiet logs
"""

from __future__ import annotations

from .base import *  # noqa: F403
from .base import LOGGING  # explicit for Ruff (F405)

DEBUG = False
TESTING = True
SECRET_KEY = "test-secret-key-not-for-production"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}


class DisableMigrations:
    def __contains__(self, item):
        return True

    def __getitem__(self, item):
        return None


MIGRATION_MODULES = DisableMigrations()

LOGGING["loggers"]["inventory"]["level"] = "CRITICAL"
LOGGING["loggers"]["purchasing"]["level"] = "CRITICAL"

SENTRY_DSN = ""
