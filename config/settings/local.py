"""
Settings for local development.
"""

import os

from .base import *  # noqa: F401,F403
from .base import REST_FRAMEWORK, env_bool

DEBUG = env_bool("DJANGO_DEBUG", True)
SECRET_KEY = os.environ.get(
    "DJANGO_SECRET_KEY",
    "local-development-secret-key-change-me",
)
JWT_SECRET = os.environ.get("JWT_SECRET", SECRET_KEY)
ALLOWED_HOSTS = ["localhost", "0.0.0.0", "127.0.0.1"]

REST_FRAMEWORK["DEFAULT_RENDERER_CLASSES"] = (
    "rest_framework.renderers.JSONRenderer",
    "rest_framework.renderers.BrowsableAPIRenderer",
)
