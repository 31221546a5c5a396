"""
Django base settings for the Catalog Ingestion service.

This module contains settings common to all environments.
For more information on this file, see
https://docs.djangoproject.com/en/4.2/topics/settings/
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "SECRET_KEY",
    "django-insecure-catalog-ingest-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DEBUG", "True") == "True"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Third-party apps
    "rest_framework",
    "drf_spectacular",
    # Local apps
    "ingestion",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"


# Database
# https://docs.djangoproject.com/en/4.2/ref/settings/#databases
# Configured in environment-specific settings (development.py, production.py, test.py)

DATABASES = {
    # Override in environment-specific settings
}


AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]


# Internationalization
# https://docs.djangoproject.com/en/4.2/topics/i18n/

LANGUAGE_CODE = "ja"

TIME_ZONE = "Asia/Tokyo"

USE_I18N = True

USE_TZ = True


# Static files (CSS, JavaScript, Images)

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# Raw blob storage (optional, see INGEST_RAW_BLOB_ENABLED)
MEDIA_ROOT = Path(os.getenv("MEDIA_ROOT", str(BASE_DIR / "media")))
MEDIA_URL = "media/"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Cache Configuration
# Configured in environment-specific settings

CACHES = {
    # Override in environment-specific settings
}


# Celery Configuration
# https://docs.celeryproject.org/en/stable/django/first-steps-with-django.html

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 60 * 60  # 1 hour max for a source run

CELERY_TASK_ROUTES = {
    "ingestion.tasks.ingest_*": {"queue": "ingest"},
    "ingestion.tasks.reprocess_*": {"queue": "ingest"},
    "ingestion.tasks.refresh_source_totals": {"queue": "default"},
}


# Django REST Framework Configuration
# https://www.django-rest-framework.org/

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 100,
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Catalog Ingestion API",
    "DESCRIPTION": "Read API over canonical products aggregated from external catalogs",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}


# Logging Configuration
# https://docs.djangoproject.com/en/4.2/topics/logging/

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
        "ingestion": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# Source credentials

DUGA_APP_ID = os.getenv("DUGA_APP_ID", "")
DUGA_AGENT_ID = os.getenv("DUGA_AGENT_ID", "")
SOKMIL_API_KEY = os.getenv("SOKMIL_API_KEY", "")
SOKMIL_AFFILIATE_ID = os.getenv("SOKMIL_AFFILIATE_ID", "")
B10F_AFFILIATE_ID = os.getenv("B10F_AFFILIATE_ID", "")
FC2_AFFILIATE_UID = os.getenv("FC2_AFFILIATE_UID", "")
MGS_AFFILIATE_CODE = os.getenv("MGS_AFFILIATE_CODE", "")
JAPANSKA_AFFILIATE_ID = os.getenv("JAPANSKA_AFFILIATE_ID", "9512-1-001")
DTI_AFFILIATE_ID = os.getenv("DTI_AFFILIATE_ID", "")


# Sentry Configuration
# https://docs.sentry.io/platforms/python/guides/django/

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))

import sentry_sdk

if SENTRY_DSN:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
        environment=SENTRY_ENVIRONMENT,
    )


# Ingestion Configuration

# Default timeout for HTTP requests (seconds)
INGEST_REQUEST_TIMEOUT = int(os.getenv("INGEST_REQUEST_TIMEOUT", "30"))

# Transport retries inside the page fetcher (5xx and timeouts only)
INGEST_MAX_RETRIES = int(os.getenv("INGEST_MAX_RETRIES", "3"))

# Delay between items within one source run (seconds)
INGEST_REQUEST_DELAY = float(os.getenv("INGEST_REQUEST_DELAY", "1.5"))

# Client-side sliding window for vendor APIs
INGEST_API_RATE_LIMIT_MAX_REQUESTS = int(
    os.getenv("INGEST_API_RATE_LIMIT_MAX_REQUESTS", "60")
)
INGEST_API_RATE_LIMIT_WINDOW_SECONDS = float(
    os.getenv("INGEST_API_RATE_LIMIT_WINDOW_SECONDS", "60")
)

# Longest pause a run accepts on RateLimitExceeded before stopping the batch
INGEST_RATE_LIMIT_MAX_WAIT = float(os.getenv("INGEST_RATE_LIMIT_MAX_WAIT", "65"))

# Attempts for the canonical upsert when a unique constraint conflict occurs
INGEST_UPSERT_MAX_ATTEMPTS = int(os.getenv("INGEST_UPSERT_MAX_ATTEMPTS", "3"))

# Pending or running runs younger than this block a new scheduled dispatch
INGEST_ACTIVE_RUN_TIMEOUT_HOURS = float(os.getenv("INGEST_ACTIVE_RUN_TIMEOUT_HOURS", "6"))

# Cross-source total estimator cache TTL (seconds)
INGEST_TOTALS_CACHE_TTL = int(os.getenv("INGEST_TOTALS_CACHE_TTL", "3600"))

# Raw body blob storage
INGEST_RAW_BLOB_ENABLED = os.getenv("INGEST_RAW_BLOB_ENABLED", "False") == "True"
INGEST_RAW_BLOB_MIN_BYTES = int(os.getenv("INGEST_RAW_BLOB_MIN_BYTES", "262144"))

# Age gate cookies sent with every HTML fetch
INGEST_DEFAULT_AGE_COOKIES = {
    "adc": "1",
    "age_check_done": "1",
    "over18": "1",
    "age_verified": "true",
}
