"""
With these settings, tests run in DEBUG on the in-memory store, with no HTTPS redirect.
"""

import os

os.environ.setdefault("DJANGO_DEBUG", "1")
os.environ.setdefault("COUNTER_STORE_BACKEND", "memory")

from .settings import *  # noqa: E402,F403

SECURE_SSL_REDIRECT = False
ALLOWED_HOSTS = ["testserver", "localhost", "127.0.0.1"]
DATABASES = {"default": {"ENGINE": "django.db.backends.sqlite3", "NAME": ":memory:"}}
