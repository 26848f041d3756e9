"""
Development settings for Kairos Platform
Fast iteration with debugging tools enabled.
"""

import os

from .base import *  # noqa: F403

# ===============================================================================
# DEVELOPMENT FLAGS
# ===============================================================================

DEBUG = True

ALLOWED_HOSTS = ['localhost', '127.0.0.1', '0.0.0.0']  # noqa: S104

# ===============================================================================
# DATABASE FOR DEVELOPMENT (SQLite for speed)
# ===============================================================================

if os.environ.get('USE_POSTGRES') != 'true':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': str(BASE_DIR / 'db.sqlite3'),  # noqa: F405
        }
    }

# ===============================================================================
# CACHE & EMAIL (Local only)
# ===============================================================================

if os.environ.get('USE_REDIS') != 'true':
    CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'kairos-dev',
        }
    }

EMAIL_BACKEND = 'django.core.mail.backends.console.EmailBackend'

# ===============================================================================
# TASK QUEUE (Run sweeps inline while developing)
# ===============================================================================

Q_CLUSTER = {
    **Q_CLUSTER_BASE,  # noqa: F405
    'workers': 1,
    'sync': os.environ.get('Q_SYNC', 'true') == 'true',
}

LOGGING['loggers']['apps']['level'] = 'DEBUG'  # noqa: F405
