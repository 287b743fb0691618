"""
Settings used by the test suite.

SQLite in memory, locmem email, eager Celery, cron secret disabled.
"""

import os

os.environ.setdefault('DJANGO_SECRET_KEY', 'test-secret-key')

from config.settings import *  # noqa: E402,F401,F403

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

CRON_SECRET = ''

DWOLLA = {
    'KEY': 'test-key',
    'SECRET': 'test-secret',
    'ENVIRONMENT': 'sandbox',
    'TIMEOUT': 5,
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']
