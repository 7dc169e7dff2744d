"""Celery task infrastructure package.

Importing this module wires together the configured Celery app; run the
worker and beat with `celery -A infrastructure.tasks worker|beat`.
"""
from .config.celery import celery_app

__all__ = ["celery_app"]
