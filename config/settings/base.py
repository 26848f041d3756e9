"""
Django settings for Kairos Platform - Base Configuration
Multi-tenant subscription platform: trials, promo codes and paid conversion.
"""

import os
from pathlib import Path
from typing import Any

# ===============================================================================
# CORE PATHS
# ===============================================================================

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# ===============================================================================
# APPLICATIONS
# ===============================================================================

DJANGO_APPS: list[str] = [
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
]

THIRD_PARTY_APPS: list[str] = [
    'rest_framework',
    'django_q',
    'django_extensions',
]

LOCAL_APPS: list[str] = [
    'apps.common',
    'apps.tenants',        # 🏢 Tenant billing pointer
    'apps.billing',        # 💳 Plans, subscriptions & conversion
    'apps.grace_periods',  # ⏳ Trial windows, reminders & expiry
    'apps.promotions',     # 🎟️ Promo codes & usage accounting
    'apps.notifications',
    'apps.api',            # 🚀 REST endpoints
]

INSTALLED_APPS: list[str] = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

# ===============================================================================
# MIDDLEWARE
# ===============================================================================

MIDDLEWARE: list[str] = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'config.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION = 'config.asgi.application'

# ===============================================================================
# DATABASE (PostgreSQL)
# ===============================================================================

DATABASES: dict[str, dict[str, Any]] = {
    'default': {
        'ENGINE': 'django.db.backends.postgresql',
        'NAME': os.environ.get('DB_NAME', 'kairos'),
        'USER': os.environ.get('DB_USER', 'kairos'),
        'PASSWORD': os.environ.get('DB_PASSWORD', 'development_password'),
        'HOST': os.environ.get('DB_HOST', 'localhost'),
        'PORT': os.environ.get('DB_PORT', '5432'),
        'CONN_MAX_AGE': 60,  # Database connection pooling
        'OPTIONS': {
            'application_name': 'kairos_billing',
        },
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ===============================================================================
# AUTHENTICATION
# ===============================================================================

AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
        'OPTIONS': {'min_length': 12},
    },
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# ===============================================================================
# INTERNATIONALIZATION
# ===============================================================================

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = '/static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# ===============================================================================
# CACHE CONFIGURATION (Redis)
# ===============================================================================

REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.redis.RedisCache',
        'LOCATION': REDIS_URL,
        'KEY_PREFIX': 'kairos',
    }
}

# ===============================================================================
# SECURITY
# ===============================================================================

SESSION_COOKIE_HTTPONLY = True
CSRF_COOKIE_HTTPONLY = True
SECURE_CONTENT_TYPE_NOSNIFF = True
X_FRAME_OPTIONS = 'DENY'

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY')
if not SECRET_KEY:
    # Development fallback - never use this in production
    import warnings
    warnings.warn(
        "🚨 SECURITY WARNING: Using default SECRET_KEY. "
        "Set DJANGO_SECRET_KEY environment variable for production!",
        UserWarning,
        stacklevel=2
    )
    SECRET_KEY = 'django-insecure-dev-key-only-change-in-production-or-tests'  # noqa: S105


def validate_production_secret_key() -> None:
    """Validate SECRET_KEY meets production security requirements"""
    if SECRET_KEY and SECRET_KEY.startswith('django-insecure-'):
        raise ValueError(
            "🔥 CRITICAL SECURITY ERROR: Cannot use insecure SECRET_KEY in production! "
            "Set DJANGO_SECRET_KEY to a generated secret."
        )


# ===============================================================================
# EMAIL
# ===============================================================================

EMAIL_BACKEND = os.environ.get('EMAIL_BACKEND', 'django.core.mail.backends.smtp.EmailBackend')
EMAIL_HOST = os.environ.get('EMAIL_HOST', 'localhost')
EMAIL_PORT = int(os.environ.get('EMAIL_PORT', '587'))
EMAIL_USE_TLS = True
DEFAULT_FROM_EMAIL = os.environ.get('DEFAULT_FROM_EMAIL', 'billing@kairos.local')

# ===============================================================================
# DJANGO REST FRAMEWORK
# ===============================================================================

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_THROTTLE_CLASSES': [
        'rest_framework.throttling.UserRateThrottle',
    ],
    'DEFAULT_THROTTLE_RATES': {
        'user': '600/hour',
    },
}

# ===============================================================================
# DJANGO-Q2 TASK QUEUE
# ===============================================================================

Q_CLUSTER_BASE = {
    'name': 'kairos-cluster',
    'timeout': 300,  # 5 minutes
    'retry': 600,  # 10 minutes retry delay
    'save_limit': 1000,  # Keep last 1000 task results
    'catch_up': False,  # Sweeps are idempotent, missed runs need no replay
    'orm': 'default',
    'bulk': 10,
    'queue_limit': 100,
}

Q_CLUSTER = {
    **Q_CLUSTER_BASE,
    'workers': 2,
    'recycle': 500,
    'sync': False,
}

# ===============================================================================
# BILLING LIFECYCLE ⏳
# ===============================================================================

# Trial window lengths (days) when the caller does not supply one
GRACE_PERIOD_DEFAULT_DURATION_DAYS = int(os.environ.get('GRACE_PERIOD_DEFAULT_DURATION_DAYS', '14'))
GRACE_PERIOD_PROMO_DURATION_DAYS = int(os.environ.get('GRACE_PERIOD_PROMO_DURATION_DAYS', '30'))

# Promo code validation throttle (per user, rolling window)
PROMO_CODE_MAX_ATTEMPTS_PER_HOUR = 10
PROMO_CODE_RATE_LIMIT_WINDOW_SECONDS = 3600

# Per-call database timeout for lifecycle operations
ENTITY_STORE_TIMEOUT_SECONDS = int(os.environ.get('ENTITY_STORE_TIMEOUT_SECONDS', '5'))

# Dotted path to the notification transport used by the reminder sweeps
GRACE_NOTIFICATION_TRANSPORT = os.environ.get(
    'GRACE_NOTIFICATION_TRANSPORT',
    'apps.notifications.services.EmailNotificationTransport',
)

DEFAULT_CURRENCY = 'EUR'

# ===============================================================================
# LOGGING
# ===============================================================================

LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

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
        'apps': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
        'django_q': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
}
