import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.local")

app = Celery("loyalty_engine")

# All celery-related settings carry the CELERY_ prefix in Django settings.
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
