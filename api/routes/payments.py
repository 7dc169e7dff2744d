"""
Payments API routes.

Gateway webhooks plus query/sync/refund endpoints. Keep this thin: no SDK
details here, the adapter behind `PaymentGateway` owns them.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from api.dependencies import get_reconciliation_service
from application.dtos.payments import PaymentDTO, RefundIn, WebhookAck
from application.services.reconciliation_service import ReconciliationService
from core.logging_config import get_logger
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


class RefundConfirmIn(BaseModel):
    refund_id: Optional[str] = None


@router.post("/webhooks/{provider}", summary="支付网关异步通知")
async def payments_webhook(
    provider: str,
    request: Request,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    Always answers with the ack body the gateway expects.

    Missed or failed notifications are recovered by status polling and
    the scheduled sweeps, so a non-2xx here would only cause redelivery.
    """
    body = await request.body()
    if provider.lower() != service.gateway.provider:
        logger.warning("payment_webhook_provider_mismatch", provider=provider, expected=service.gateway.provider)
        return JSONResponse(status_code=200, content=WebhookAck().model_dump())
    try:
        ack = await service.handle_gateway_notification(dict(request.headers), body)
    except Exception as exc:
        logger.error("payment_webhook_error", provider=provider, error=str(exc), exc_info=True)
        ack = WebhookAck()
    return JSONResponse(status_code=200, content=ack.model_dump())


@router.get("/{out_trade_no}", summary="支付记录详情", response_model=ApiResponse[PaymentDTO])
async def get_payment(
    out_trade_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return success_response(data=await service.get_payment(out_trade_no))


@router.post("/{out_trade_no}/sync", summary="主动查询并同步支付状态", response_model=ApiResponse[PaymentDTO])
async def sync_payment(
    out_trade_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return success_response(data=await service.query_and_sync(out_trade_no))


@router.post("/{out_trade_no}/refund", summary="申请退款", response_model=ApiResponse[PaymentDTO])
async def refund_payment(
    out_trade_no: str,
    cmd: RefundIn,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    payment = await service.refund(out_trade_no, cmd.amount, cmd.reason)
    return success_response(data=payment, message="退款已受理")


@router.post("/{out_trade_no}/refund/sync", summary="查询并同步退款状态", response_model=ApiResponse[PaymentDTO])
async def sync_refund(
    out_trade_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return success_response(data=await service.query_refund_and_sync(out_trade_no))


@router.post("/{out_trade_no}/refund/confirm", summary="人工确认退款到账", response_model=ApiResponse[PaymentDTO])
async def confirm_refund(
    out_trade_no: str,
    cmd: RefundConfirmIn,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    payment = await service.confirm_refund(out_trade_no, cmd.refund_id)
    return success_response(data=payment, message="退款已确认")
