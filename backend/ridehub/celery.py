"""Celery application for background ride maintenance and notifications."""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "ridehub.settings.settings")

app = Celery("ridehub")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
