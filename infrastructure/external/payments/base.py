"""
Base payment client implementing shared concerns: retry, timeouts, logging, mapping.

Provider SDKs used here are synchronous; calls run in a worker thread and
are bounded by the configured total timeout.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.logging_config import get_logger
from domain.payment.entity import ResultKind
from infrastructure.external.payments.exceptions import (
    PaymentRecoverableError,
    PaymentTimeoutError,
)
from shared.codes.payment_codes import PROVIDER_REFUND_STATUS_TO_INTERNAL, PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        retry: Optional[dict[str, Any]] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 1.0, "read": 3.0, "total": 5.0}
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    async def _retry(self, fn: Callable[[], Any]):
        # requests' exceptions and TimeoutError are both OSError subclasses
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception_type(OSError),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _run_sync(self, operation: str, fn: Callable[..., Any], **kwargs) -> Any:
        """Run a blocking SDK call with timeout and transport retry."""

        async def _invoke():
            return await asyncio.wait_for(
                asyncio.to_thread(fn, **kwargs),
                timeout=self._timeouts_cfg["total"],
            )

        try:
            return await self._retry(_invoke)
        except TimeoutError as exc:
            self._log("payment_provider_timeout", operation=operation)
            raise PaymentTimeoutError(f"{operation} timed out", provider=self.provider) from exc
        except OSError as exc:
            self._log("payment_provider_unreachable", operation=operation, error=str(exc))
            raise PaymentRecoverableError(str(exc), provider=self.provider) from exc

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _result_kind(self, provider_status: str) -> ResultKind:
        try:
            return ResultKind(self._map_status(provider_status))
        except ValueError:
            # unknown states never finalize an attempt
            return ResultKind.PENDING

    def _refund_kind(self, provider_status: str) -> ResultKind:
        mapping = PROVIDER_REFUND_STATUS_TO_INTERNAL.get(self.provider, {})
        try:
            return ResultKind(mapping.get(provider_status, "pending"))
        except ValueError:
            return ResultKind.PENDING

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
