"""
Django settings for the release orchestrator.

Values come from the process environment (optionally populated from .env files,
see config/env.py). Every orchestration knob has a safe default so the test
suite and a local `manage.py` run need no configuration at all.
"""

from __future__ import annotations

import os
from pathlib import Path

from config.env import load_env

BASE_DIR = Path(__file__).resolve().parent.parent

load_env(BASE_DIR)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: list[str]) -> list[str]:
    value = os.environ.get(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "insecure-dev-key-change-me")
DEBUG = _env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = _env_list("DJANGO_ALLOWED_HOSTS", ["localhost", "127.0.0.1", "testserver"])

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "django_object_actions",
    "apps.audit",
    "apps.projects",
    "apps.orchestration",
    "apps.testruns",
    "apps.deployments",
    "apps.scm",
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
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("DJANGO_DB_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

# --- Logging ---------------------------------------------------------------

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django": {"handlers": ["console"], "level": "WARNING", "propagate": False},
        "apps": {"handlers": ["console"], "level": LOG_LEVEL, "propagate": False},
    },
}

# --- Celery ----------------------------------------------------------------

CELERY_BROKER_URL = os.environ.get("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.environ.get("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_TASK_ALWAYS_EAGER = _env_bool("CELERY_TASK_ALWAYS_EAGER", False)
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_ACCEPT_CONTENT = ["json"]

# --- Orchestration ---------------------------------------------------------

ORCHESTRATION_BACKOFF_FACTOR = float(os.environ.get("ORCHESTRATION_BACKOFF_FACTOR", "2.0"))
ORCHESTRATION_DEFAULT_ENVIRONMENT = os.environ.get(
    "ORCHESTRATION_DEFAULT_ENVIRONMENT", "development"
)
ORCHESTRATION_RELEASE_ENVIRONMENT = os.environ.get(
    "ORCHESTRATION_RELEASE_ENVIRONMENT", "production"
)
ORCHESTRATION_BLOCKED_COMMAND_PATTERNS = [
    r"rm\s+-rf\s+/(\s|$)",
    r"curl[^|]*\|\s*(ba)?sh",
    r"wget[^|]*\|\s*(ba)?sh",
    r":\(\)\s*\{\s*:\|:&\s*\};:",
]
ORCHESTRATION_MAX_OUTPUT_CHARS = int(os.environ.get("ORCHESTRATION_MAX_OUTPUT_CHARS", "20000"))
ORCHESTRATION_METRICS_BACKEND = os.environ.get("ORCHESTRATION_METRICS_BACKEND", "logging")
ORCHESTRATION_OPEN_ISSUE_ON_FAILURE = _env_bool("ORCHESTRATION_OPEN_ISSUE_ON_FAILURE", False)
ORCHESTRATION_WORKSPACE_ROOT = os.environ.get("ORCHESTRATION_WORKSPACE_ROOT", "")

# --- Deployments -----------------------------------------------------------

DEPLOYMENT_APPROVER_ROLES = {
    "development": ["admin", "lead_developer"],
    "staging": ["admin", "lead_developer"],
    "production": ["admin"],
}
DEPLOYMENT_HEALTH_POLL_INTERVAL = int(os.environ.get("DEPLOYMENT_HEALTH_POLL_INTERVAL", "30"))
DEPLOYMENT_MONITORING_WINDOW = int(os.environ.get("DEPLOYMENT_MONITORING_WINDOW", "600"))
DEPLOYMENT_DEFAULT_FAILURE_THRESHOLD = int(
    os.environ.get("DEPLOYMENT_DEFAULT_FAILURE_THRESHOLD", "3")
)

# --- Audit -----------------------------------------------------------------

AUDIT_BACKEND = os.environ.get("AUDIT_BACKEND", "database")

# --- Source control --------------------------------------------------------

SCM_PROVIDERS = {
    "github": {
        "token": os.environ.get("GITHUB_TOKEN", ""),
        "api_url": os.environ.get("GITHUB_API_URL", "https://api.github.com"),
    },
    "gitlab": {
        "token": os.environ.get("GITLAB_TOKEN", ""),
        "api_url": os.environ.get("GITLAB_API_URL", "https://gitlab.com/api/v4"),
    },
}
SCM_MAX_ATTEMPTS = int(os.environ.get("SCM_MAX_ATTEMPTS", "3"))
SCM_BACKOFF_FACTOR = float(os.environ.get("SCM_BACKOFF_FACTOR", "1.0"))
