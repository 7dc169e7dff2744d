"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts are integers in minor units everywhere; the `*_yuan` fields on
read models are filled in by the presentation helpers below.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from domain.common.money import format_yuan
from domain.payment.entity import GatewayResult, PaymentRecord, RefundResult, TradeType


ISO_4217 = {"CNY", "HKD", "USD"}

PAYMENT_STATUS_TEXT = {
    "PENDING": "待支付",
    "PAID": "已支付",
    "FAILED": "支付失败",
    "REFUNDING": "退款中",
    "REFUNDED": "已退款",
    "CANCELLED": "已取消",
}


def payment_status_text(status: str) -> str:
    return PAYMENT_STATUS_TEXT.get(status, "未知状态")


# ----------------------------------------------------------------------
# Gateway boundary
# ----------------------------------------------------------------------
class PrepayRequest(BaseModel):
    out_trade_no: str = Field(max_length=32)
    description: str
    total_fee: int = Field(gt=0)
    currency: str = "CNY"
    trade_type: TradeType = TradeType.JSAPI
    payer_openid: Optional[str] = None
    notify_url: Optional[str] = None
    attach: Optional[str] = None
    # H5 支付需要付款人 IP
    client_ip: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        u = (v or "").upper()
        if u not in ISO_4217:
            raise ValueError("unsupported currency")
        return u


class PrepayHandle(BaseModel):
    out_trade_no: str
    prepay_id: Optional[str] = None
    code_url: Optional[str] = None
    # JSAPI: parameters the client passes to wx.requestPayment
    client_params: Optional[dict[str, Any]] = None


class RefundCall(BaseModel):
    out_trade_no: str
    out_refund_no: str
    refund_fee: int = Field(gt=0)
    total_fee: int = Field(gt=0)
    currency: str = "CNY"
    reason: Optional[str] = None
    transaction_id: Optional[str] = None
    notify_url: Optional[str] = None


@dataclass(frozen=True)
class VerifiedNotification:
    """A notification whose signature and payload have been verified."""

    id: str
    provider: str
    kind: Literal["payment", "refund"]
    event_type: str
    payment: Optional[GatewayResult] = None
    refund: Optional[RefundResult] = None


class WebhookAck(BaseModel):
    code: str = "SUCCESS"
    message: str = "成功"


# ----------------------------------------------------------------------
# Read models
# ----------------------------------------------------------------------
class PaymentDTO(BaseModel):
    out_trade_no: str
    order_no: str
    platform_id: str
    provider: str
    trade_type: str
    status: str
    status_text: str
    total_fee: int
    total_fee_yuan: str
    currency: str
    description: Optional[str] = None
    payer_openid: Optional[str] = None
    prepay_id: Optional[str] = None
    code_url: Optional[str] = None
    transaction_id: Optional[str] = None
    time_end: Optional[datetime] = None
    cash_fee: Optional[int] = None
    err_code: Optional[str] = None
    err_code_des: Optional[str] = None
    out_refund_no: Optional[str] = None
    refund_fee: Optional[int] = None
    refund_fee_yuan: Optional[str] = None
    refund_status: Optional[str] = None
    refund_id: Optional[str] = None
    refund_success_time: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentIntentDTO(BaseModel):
    out_trade_no: str
    order_no: str
    total_fee: int
    total_fee_yuan: str
    prepay_id: Optional[str] = None
    code_url: Optional[str] = None
    client_params: Optional[dict[str, Any]] = None


class RefundIn(BaseModel):
    amount: int = Field(gt=0, description="退款金额（分）")
    reason: Optional[str] = Field(default=None, max_length=256)


def to_payment_dto(payment: PaymentRecord) -> PaymentDTO:
    return PaymentDTO(
        out_trade_no=payment.out_trade_no,
        order_no=payment.order_no,
        platform_id=payment.platform_id,
        provider=payment.provider,
        trade_type=payment.trade_type.value,
        status=payment.status.value,
        status_text=payment_status_text(payment.status.value),
        total_fee=payment.total_fee,
        total_fee_yuan=format_yuan(payment.total_fee),
        currency=payment.currency,
        description=payment.description,
        payer_openid=payment.payer_openid,
        prepay_id=payment.prepay_id,
        code_url=payment.code_url,
        transaction_id=payment.transaction_id,
        time_end=payment.time_end,
        cash_fee=payment.cash_fee,
        err_code=payment.err_code,
        err_code_des=payment.err_code_des,
        out_refund_no=payment.out_refund_no,
        refund_fee=payment.refund_fee,
        refund_fee_yuan=format_yuan(payment.refund_fee) if payment.refund_fee is not None else None,
        refund_status=payment.refund_status.value if payment.refund_status else None,
        refund_id=payment.refund_id,
        refund_success_time=payment.refund_success_time,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
    )


def to_intent_dto(payment: PaymentRecord, handle: Optional[PrepayHandle] = None) -> PaymentIntentDTO:
    return PaymentIntentDTO(
        out_trade_no=payment.out_trade_no,
        order_no=payment.order_no,
        total_fee=payment.total_fee,
        total_fee_yuan=format_yuan(payment.total_fee),
        prepay_id=payment.prepay_id,
        code_url=payment.code_url,
        client_params=handle.client_params if handle else None,
    )
