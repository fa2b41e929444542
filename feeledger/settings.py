# feeledger/settings.py

"""
Django settings for the feeledger project.

Environment variables:
    FEELEDGER_SECRET_KEY     - secret key (required outside DEBUG)
    FEELEDGER_DEBUG          - "1"/"true" to enable debug mode
    FEELEDGER_ALLOWED_HOSTS  - comma separated host names
    FEELEDGER_DB_PATH        - SQLite database file
    FEELEDGER_LOCK_TIMEOUT   - seconds a writer waits for a row/database lock
    FEELEDGER_LOG_LEVEL      - root log level (default INFO)
"""

import os
import sys
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# Apps live in BASE_DIR/apps and are imported as top-level packages
APPS_DIR = BASE_DIR / 'apps'
if str(APPS_DIR) not in sys.path:
    sys.path.insert(0, str(APPS_DIR))


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


DEBUG = _env_bool('FEELEDGER_DEBUG', default=False)

SECRET_KEY = os.environ.get(
    'FEELEDGER_SECRET_KEY',
    'django-insecure-feeledger-development-key',
)

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get('FEELEDGER_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]


# =============================================================================
# APPLICATIONS
# =============================================================================

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Project apps
    'utils',
    'core',
    'academics',
    'students.apps.StudentsConfig',
    'fees.apps.FeesConfig',
    'finance.apps.FinanceConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'utils.middleware.AuditContextMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'feeledger.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'feeledger.wsgi.application'


# =============================================================================
# DATABASE
# =============================================================================
# IMMEDIATE transactions take the write lock when an atomic block opens, so
# ledger mutations are serialized and a waiting writer gives up after
# LEDGER_LOCK_TIMEOUT seconds (surfaced as ConcurrencyError).

LEDGER_LOCK_TIMEOUT = int(os.environ.get('FEELEDGER_LOCK_TIMEOUT', '20'))

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('FEELEDGER_DB_PATH', str(BASE_DIR / 'db.sqlite3')),
        'OPTIONS': {
            'transaction_mode': 'IMMEDIATE',
            'timeout': LEDGER_LOCK_TIMEOUT,
        },
        'TEST': {
            # File backed so worker threads share the test database
            'NAME': str(BASE_DIR / 'test_feeledger.sqlite3'),
        },
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =============================================================================
# INTERNATIONALIZATION
# =============================================================================

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Africa/Nairobi'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'


# =============================================================================
# LEDGER POLICY
# =============================================================================

# Transparent retries for ConcurrencyError when FinancialSettings is unavailable
LEDGER_RETRY_ATTEMPTS = 3


# =============================================================================
# LOGGING
# =============================================================================

LOG_LEVEL = os.environ.get('FEELEDGER_LOG_LEVEL', 'INFO').upper()

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
        'audit': {
            'format': '{asctime} AUDIT-FALLBACK {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
        'audit_fallback': {
            'class': 'logging.StreamHandler',
            'formatter': 'audit',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': LOG_LEVEL,
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
        # Receives audit records that could not be persisted
        'financial_audit': {
            'handlers': ['audit_fallback'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
