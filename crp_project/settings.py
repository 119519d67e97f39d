# crp_project/settings.py

"""
Django settings for the ledger engine project.

Only the pieces the engine needs: the ORM, the admin and the engine knobs.
Database engine and name can be overridden through the environment.
"""

import os
from decimal import Decimal
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'insecure-development-key-change-me')
DEBUG = os.environ.get('DJANGO_DEBUG', '1') == '1'
ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h]

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    # Third-party
    'rest_framework',
    'safedelete',
    'simple_history',
    # Local
    'company.apps.CompanyConfig',
    'ledger_engine.apps.LedgerEngineConfig',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'simple_history.middleware.HistoryRequestMiddleware',
]

ROOT_URLCONF = 'crp_project.urls'

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

DATABASES = {
    'default': {
        'ENGINE': os.environ.get('DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.environ.get('DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.environ.get('DB_USER', ''),
        'PASSWORD': os.environ.get('DB_PASSWORD', ''),
        'HOST': os.environ.get('DB_HOST', ''),
        'PORT': os.environ.get('DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Kolkata'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

REST_FRAMEWORK = {
    'COERCE_DECIMAL_TO_STRING': True,
}

# =============================================================================
# Ledger engine
# =============================================================================
LEDGER_SEQUENCE_MAX_RETRIES = int(os.environ.get('LEDGER_SEQUENCE_MAX_RETRIES', 3))
LEDGER_BALANCE_TOLERANCE = Decimal(os.environ.get('LEDGER_BALANCE_TOLERANCE', '0.01'))
LEDGER_CREDIT_WARNING_RATIO = Decimal(os.environ.get('LEDGER_CREDIT_WARNING_RATIO', '0.80'))
LEDGER_DEFAULT_FY_START_MONTH = int(os.environ.get('LEDGER_DEFAULT_FY_START_MONTH', 4))
# LEDGER_CASH_FLOW_KEYWORDS = (('investing', ('asset', ...)), ...)  # see crp_core.constants

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'ledger_engine': {
            'handlers': ['console'],
            'level': os.environ.get('LEDGER_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'company': {
            'handlers': ['console'],
            'level': os.environ.get('LEDGER_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}
