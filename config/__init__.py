# Celery app ko Django start hote hi load karein taaki @shared_task bind ho jaye
from .celery import app as celery_app

__all__ = ("celery_app",)
