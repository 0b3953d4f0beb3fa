"""
With these settings, tests run faster.
"""

import tempfile

from .base import *  # noqa: F401,F403

SECRET_KEY = "test-secret-key"
JWT_SECRET = "test-jwt-secret"
DEBUG = False

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
MEDIA_ROOT = tempfile.mkdtemp(prefix="guild-loot-media-")

LOOT_WEBHOOK_URL = None
LOGGING["loggers"]["guild_loot"]["level"] = "DEBUG"  # noqa: F405
