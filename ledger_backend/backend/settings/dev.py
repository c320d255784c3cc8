# backend/settings/dev.py
"""
PATH: backend/settings/dev.py

LOCAL DEVELOPMENT SETTINGS
Safe + convenient defaults (SQLite unless DATABASE_URL says otherwise).
"""

from __future__ import annotations

from .base import *  # noqa: F403
from .base import LOGGING, env  # explicit for Ruff (F405)

DEBUG = True

ALLOWED_HOSTS = env.list("ALLOWED_HOSTS", default=["localhost", "127.0.0.1"])

# Chatty inventory logs while developing locally.
LOGGING["loggers"]["inventory"]["level"] = env("LOG_LEVEL", default="DEBUG").upper()
LOGGING["loggers"]["purchasing"]["level"] = env("LOG_LEVEL", default="DEBUG").upper()
