"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Protocol, runtime_checkable

from application.dtos.payments import (
    PrepayHandle,
    PrepayRequest,
    RefundCall,
    VerifiedNotification,
)
from domain.payment.entity import GatewayResult, RefundResult


# The provider's view of one attempt / one refund
GatewayStatus = GatewayResult
RefundHandle = RefundResult


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Implementations are async. Failures of the provider call itself raise
    GatewayException; notifications that fail verification raise
    AuthenticityException.
    """

    provider: str

    async def create_prepay(self, req: PrepayRequest) -> PrepayHandle: ...

    async def verify_notification(self, headers: Mapping[str, Any], body: bytes) -> VerifiedNotification: ...

    async def query_status(self, out_trade_no: str) -> GatewayStatus: ...

    async def refund(self, req: RefundCall) -> RefundHandle: ...

    async def close(self, out_trade_no: str) -> None: ...

    async def query_refund(self, out_refund_no: str, out_trade_no: str) -> RefundHandle: ...
