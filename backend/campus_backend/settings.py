import math
import os
import re
import sys
from pathlib import Path
from dotenv import load_dotenv
import dj_database_url

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

SECRET_KEY = os.environ.get("SECRET_KEY", os.environ.get("DJANGO_SECRET_KEY", "changeme"))
DEBUG = os.getenv("DEBUG", os.getenv("DJANGO_DEBUG", "True")) == "True"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "127.0.0.1,localhost").split(",")

# Include Django's manage.py test invocation.
TESTING = (
    "PYTEST_CURRENT_TEST" in os.environ
    or "pytest" in sys.modules
    or "pytest" in sys.argv
    or "test" in sys.argv
)

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "ops.apps.OpsConfig",  # Operations & observability
    "tenant.apps.TenantConfig",  # School registry + per-tenant connections
    "accounts.apps.AccountsConfig",
    "records.apps.RecordsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "ops.metrics.track_request_metrics",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "accounts.middleware.SchoolContextMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "campus_backend.urls"

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
    }
]

WSGI_APPLICATION = "campus_backend.wsgi.application"

# =============================================================================
# Database Configuration
# =============================================================================
DATABASES = {
    "default": dj_database_url.config(
        env="DATABASE_URL",
        default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}",
        conn_max_age=600,
    )
}

# Upper bound (seconds) for establishing or waiting on a school connection.
TENANT_CONNECT_TIMEOUT = float(os.getenv("TENANT_CONNECT_TIMEOUT", "8"))

# Dedicated school databases from environment variables
# Format: DATABASE_URL_TENANT_{CODE} = postgresql://...
# Example: DATABASE_URL_TENANT_NPS -> db alias "tenant_nps"
# Aliases missing here are registered lazily by tenant.connections.
for key, value in os.environ.items():
    match = re.match(r"^DATABASE_URL_TENANT_(.+)$", key)
    if match:
        alias = f"tenant_{match.group(1).lower()}"
        DATABASES[alias] = dj_database_url.parse(value, conn_max_age=600)
        if DATABASES[alias]["ENGINE"] == "django.db.backends.postgresql":
            DATABASES[alias].setdefault("OPTIONS", {})["connect_timeout"] = max(
                1, math.ceil(TENANT_CONNECT_TIMEOUT)
            )

# Database Router for tenant isolation
DATABASE_ROUTERS = ["tenant.router.TenantDatabaseRouter"]

# =============================================================================
# Tenant Connections
# =============================================================================
# How many times a broken cached connection is rebuilt before giving up.
TENANT_CONNECT_RETRIES = int(os.getenv("TENANT_CONNECT_RETRIES", "1"))

# Codes accepted literally by the registry even without a School row.
# Every entry here bypasses registry verification; keep it short and audited.
LEGACY_SCHOOL_CODES = [
    code.strip().upper()
    for code in os.getenv("LEGACY_SCHOOL_CODES", "").split(",")
    if code.strip()
]

# =============================================================================
# Identity Issuance
# =============================================================================
IDENTITY_MAX_ATTEMPTS = int(os.getenv("IDENTITY_MAX_ATTEMPTS", "5"))
CREDENTIAL_LENGTH = int(os.getenv("CREDENTIAL_LENGTH", "8"))

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
        "OPTIONS": {"min_length": 8},
    },
]

if TESTING:
    # Hashing cost is irrelevant for tests and bcrypt/PBKDF2 dominates runtime.
    PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
}

# =============================================================================
# Structured Logging Configuration
# =============================================================================
from ops.logging_config import get_logging_config
LOGGING = get_logging_config(DEBUG)

# =============================================================================
# Observability Configuration
# =============================================================================
# Application version (set via CI/CD)
VERSION = os.getenv("APP_VERSION", "dev")
