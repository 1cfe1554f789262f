"""
Pytest configuration and shared fixtures.

Environment variables normally come from .env.test; defaults are filled in
here so settings resolve before any application module is imported.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_skillswap.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("AUTH_SECRET", "test-auth-secret")
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

# Clear settings cache before any app imports to ensure test env vars are used
from skillswap.config import get_settings  # noqa: E402
get_settings.cache_clear()
