"""
With these settings, tests run faster.
"""

from .base import *  # noqa: F403

SECRET_KEY = "test-secret-key-not-for-production"
JWT_SECRET_KEY = SECRET_KEY
DEBUG = False

# File-backed so threaded tests share one database. IMMEDIATE makes a second
# writer wait on BEGIN instead of failing on its first write.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": str(BASE_DIR / "test-db.sqlite3"),  # noqa: F405
        "ATOMIC_REQUESTS": False,
        "OPTIONS": {"transaction_mode": "IMMEDIATE", "timeout": 20},
        "TEST": {"NAME": str(BASE_DIR / "test-db.sqlite3")},  # noqa: F405
    },
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

APP_URL = "https://app.example.com"
STRIPE_SECRET_KEY = "sk_test_dummy"
STRIPE_WEBHOOK_SECRET = "whsec_test_dummy"
STRIPE_PRO_PRODUCT_ID = "prod_test_pro"
BILLING_TRIAL_PERIOD_DAYS = 14
BILLING_DEFAULT_PERIOD_DAYS = 30
