from .base import *

SECRET_KEY = "test-secret-key"
REDEMPTION_TOKEN_SECRET = "test-redemption-token-secret"

DEBUG = False

ALLOWED_HOSTS = ["*"]

# SQLite unless DATABASE_URL points somewhere else (the concurrency tests need PostgreSQL).
DATABASES = {
    "default": env.db("DATABASE_URL", default="sqlite://:memory:"),
}
if DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
    DATABASES["default"].setdefault("OPTIONS", {}).update(postgres_options(DB_LOCK_TIMEOUT_MS))

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = "memory://"

LOGGING["loggers"]["loyalty"]["level"] = "WARNING"
