"""
With these settings, tests run faster.
"""

from .base import *  # noqa: F403
from .base import INSTALLED_APPS
from .base import env

# GENERAL
# ------------------------------------------------------------------------------
# https://docs.djangoproject.com/en/dev/ref/settings/#secret-key
SECRET_KEY = env(
    "DJANGO_SECRET_KEY",
    default="AlGzerkUv160WCFbKM8vn2qyFYWS5jX0AHND8TnRj55iqlMSPtJsUllwpba1oqOO",
)
# https://docs.djangoproject.com/en/dev/ref/settings/#test-runner
TEST_RUNNER = "django.test.runner.DiscoverRunner"

# DATABASES
# ------------------------------------------------------------------------------
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    },
}

# APPS
# ------------------------------------------------------------------------------
INSTALLED_APPS = [*INSTALLED_APPS, "tests.testapp"]

# REALTIME
# ------------------------------------------------------------------------------
# Tests register their own coordinators with a recording channel.
REALTIME_CONTENT_TYPES = []
REALTIME_SENSITIVE_FIELDS = []
REALTIME_DEFERRED_RUNNER = "inline"
