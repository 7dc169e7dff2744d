"""
Celery tasks for payment reconciliation: single-trade polling and the
periodic sweeps over stale PENDING payments and stuck REFUNDING refunds.

Each task runs its coroutine with `asyncio.run` so every invocation gets
its own event loop; pooled DB connections are disposed before the loop
closes because asyncpg connections are bound to the loop that opened them.
"""
from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import timedelta
from typing import Any, Awaitable, Callable, TypeVar

from celery import shared_task

from application.services.reconciliation_service import ReconciliationConfig, ReconciliationService
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import GatewayException
from infrastructure.database import engine
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork
from ..utils.base_task import BaseTask


logger = get_logger(__name__)

T = TypeVar("T")


def build_service() -> ReconciliationService:
    return ReconciliationService(
        uow_factory=SQLAlchemyUnitOfWork,
        gateway=get_payment_gateway(),
        config=ReconciliationConfig.from_settings(settings.reconciliation),
    )


def _run(work: Callable[[ReconciliationService], Awaitable[T]]) -> T:
    async def _main() -> T:
        try:
            return await work(build_service())
        finally:
            await engine.dispose()

    return asyncio.run(_main())


@shared_task(
    name="payments.query_status",
    bind=True,
    base=BaseTask,
    autoretry_for=(GatewayException,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def query_payment_status(self, out_trade_no: str) -> dict[str, Any]:
    """Poll the gateway for one trade and merge the result."""
    payment = _run(lambda service: service.query_and_sync(out_trade_no))
    logger.info("payment_status_polled", out_trade_no=out_trade_no, status=payment.status)
    return {"out_trade_no": out_trade_no, "status": payment.status}


@shared_task(name="payments.sweep_stale", bind=True, base=BaseTask)
def sweep_stale_payments(self, older_than_seconds: int | None = None) -> dict[str, int]:
    seconds = older_than_seconds or settings.reconciliation.stale_pending_after_seconds
    report = _run(lambda service: service.sweep_stale_payments(timedelta(seconds=seconds)))
    return asdict(report)


@shared_task(name="payments.sweep_refunds", bind=True, base=BaseTask)
def sweep_stuck_refunds(self, older_than_seconds: int | None = None) -> dict[str, int]:
    seconds = older_than_seconds or settings.reconciliation.stuck_refund_after_seconds
    report = _run(lambda service: service.sweep_stuck_refunds(timedelta(seconds=seconds)))
    return asdict(report)
