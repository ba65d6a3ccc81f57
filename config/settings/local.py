from .base import *  # Import defaults from base.py

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env("SECRET_KEY", default="django-insecure-dev-key")
REDEMPTION_TOKEN_SECRET = env("REDEMPTION_TOKEN_SECRET", default=SECRET_KEY)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = True

ALLOWED_HOSTS = ["*"]

# Token lifetime is generous locally so QR codes survive a debugging session.
REDEMPTION_TOKEN_EXPIRY_MINUTES = env.int("REDEMPTION_TOKEN_EXPIRY_MINUTES", default=60)

LOGGING["loggers"]["loyalty"]["level"] = "DEBUG"
