"""
Test settings for the Catalog Ingestion service.

Uses in-memory SQLite and eager Celery for fast test execution.
"""

import os
from .base import *

# Test mode
DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# Test database - in-memory SQLite for speed
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Test Cache - use local memory cache
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "unique-snowflake",
    }
}

# Test Celery - run tasks synchronously
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

# Test logging - minimal output
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["ingestion"]["level"] = "WARNING"

AUTH_PASSWORD_VALIDATORS = []

PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Disable Sentry in tests
SENTRY_DSN = ""

# Test ingestion settings - fail fast, no waiting
INGEST_REQUEST_TIMEOUT = 5
INGEST_MAX_RETRIES = 1
INGEST_REQUEST_DELAY = 0
INGEST_RATE_LIMIT_MAX_WAIT = 0
INGEST_RAW_BLOB_ENABLED = False

DUGA_APP_ID = "test-app"
DUGA_AGENT_ID = "test-agent"
SOKMIL_API_KEY = "test-key"
SOKMIL_AFFILIATE_ID = "test-affiliate"
B10F_AFFILIATE_ID = "12345"
