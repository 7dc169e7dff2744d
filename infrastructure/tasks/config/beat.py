"""Celery beat schedule for reconciliation sweeps.

Intervals come from `settings.celery`; the age thresholds the sweeps use
come from `settings.reconciliation` and are read inside the tasks.
"""
from __future__ import annotations

from core.config import settings


CELERY_BEAT_SCHEDULE = {
    "payments-sweep-stale": {
        "task": "payments.sweep_stale",
        "schedule": settings.celery.sweep_stale_interval,
    },
    "payments-sweep-refunds": {
        "task": "payments.sweep_refunds",
        "schedule": settings.celery.sweep_refunds_interval,
    },
}
