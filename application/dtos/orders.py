"""
Order DTOs (Pydantic v2) and presentation helpers.

Range checks on amounts and quantities live in the domain so that API
callers and internal callers get the same ValidationError.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from domain.common.money import format_yuan
from domain.order.entity import Order, OrderType
from domain.order.repository import StatusBucket
from domain.payment.entity import TradeType
from application.dtos.payments import PaymentIntentDTO


ORDER_STATUS_TEXT = {
    "PENDING": "待支付",
    "PAID": "已支付",
    "SHIPPED": "已发货",
    "DELIVERED": "已收货",
    "CANCELLED": "已取消",
    "REFUNDED": "已退款",
    "COMPLETED": "已完成",
    "REFUNDING": "退款中",
}


def status_text(status: str) -> str:
    return ORDER_STATUS_TEXT.get(status, "未知状态")


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
class OrderItemIn(BaseModel):
    product_id: str
    product_name: str = ""
    unit_price: int = Field(description="单价（分）")
    quantity: int
    sku_id: Optional[str] = None
    sku_name: Optional[str] = None
    product_image: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class ShippingAddressIn(BaseModel):
    receiver_name: str
    receiver_phone: str
    province: str
    city: str
    district: str
    address: str
    postal_code: Optional[str] = None


class CreateOrderIn(BaseModel):
    items: List[OrderItemIn]
    platform_id: Optional[str] = None
    user_id: Optional[str] = None
    openid: Optional[str] = None
    order_type: OrderType = OrderType.PRODUCT
    shipping_address: Optional[ShippingAddressIn] = None
    shipping_fee: int = 0
    discount_amount: int = 0
    buyer_message: Optional[str] = None
    trade_type: TradeType = TradeType.JSAPI
    # 付款人 openid，缺省时使用下单 openid
    payer_openid: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=127)


class PaymentAttemptIn(BaseModel):
    payer_openid: Optional[str] = None
    trade_type: TradeType = TradeType.JSAPI


class LogisticsIn(BaseModel):
    company: str = Field(min_length=1)
    tracking_number: str = Field(min_length=1)
    description: Optional[str] = None


class CancelIn(BaseModel):
    reason: Optional[str] = None


class RemarkIn(BaseModel):
    seller_message: Optional[str] = None


# ----------------------------------------------------------------------
# Read models
# ----------------------------------------------------------------------
class OrderItemDTO(BaseModel):
    product_id: str
    product_name: str
    unit_price: int
    unit_price_yuan: str
    quantity: int
    total_price: int
    total_price_yuan: str
    sku_id: Optional[str] = None
    sku_name: Optional[str] = None
    product_image: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class OrderDTO(BaseModel):
    order_no: str
    platform_id: str
    order_type: str
    user_id: Optional[str] = None
    openid: Optional[str] = None
    status: str
    status_text: str
    payment_status: str
    items: List[OrderItemDTO]
    item_count: int
    subtotal: int
    subtotal_yuan: str
    shipping_fee: int
    discount_amount: int
    total_amount: int
    total_amount_yuan: str
    paid_amount: int
    paid_amount_yuan: str
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    payment_time: Optional[datetime] = None
    shipping_address: Optional[Dict[str, Any]] = None
    logistics: Optional[Dict[str, Any]] = None
    shipping_time: Optional[datetime] = None
    delivery_time: Optional[datetime] = None
    completed_time: Optional[datetime] = None
    buyer_message: Optional[str] = None
    seller_message: Optional[str] = None
    refund_status: Optional[str] = None
    refund_amount: Optional[int] = None
    refund_reason: Optional[str] = None
    refund_time: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderCreatedDTO(BaseModel):
    order: OrderDTO
    payment: PaymentIntentDTO


class StatusStatDTO(BaseModel):
    count: int
    amount: int
    amount_yuan: str


class StatsDTO(BaseModel):
    total: int
    total_amount: int
    total_amount_yuan: str
    status_stats: Dict[str, StatusStatDTO]


def to_order_dto(order: Order) -> OrderDTO:
    return OrderDTO(
        order_no=order.order_no,
        platform_id=order.platform_id,
        order_type=order.order_type.value,
        user_id=order.user_id,
        openid=order.openid,
        status=order.status.value,
        status_text=status_text(order.effective_status),
        payment_status=order.payment_status.value,
        items=[
            OrderItemDTO(
                product_id=i.product_id,
                product_name=i.product_name,
                unit_price=i.unit_price,
                unit_price_yuan=format_yuan(i.unit_price),
                quantity=i.quantity,
                total_price=i.total_price,
                total_price_yuan=format_yuan(i.total_price),
                sku_id=i.sku_id,
                sku_name=i.sku_name,
                product_image=i.product_image,
                attributes=i.attributes,
            )
            for i in order.items
        ],
        item_count=order.item_count,
        subtotal=order.subtotal,
        subtotal_yuan=format_yuan(order.subtotal),
        shipping_fee=order.shipping_fee,
        discount_amount=order.discount_amount,
        total_amount=order.total_amount,
        total_amount_yuan=format_yuan(order.total_amount),
        paid_amount=order.paid_amount,
        paid_amount_yuan=format_yuan(order.paid_amount),
        payment_method=order.payment_method.value if order.payment_method else None,
        payment_id=order.payment_id,
        payment_time=order.payment_time,
        shipping_address=order.shipping_address.to_dict() if order.shipping_address else None,
        logistics=order.logistics.to_dict() if order.logistics else None,
        shipping_time=order.shipping_time,
        delivery_time=order.delivery_time,
        completed_time=order.completed_time,
        buyer_message=order.buyer_message,
        seller_message=order.seller_message,
        refund_status=order.refund_status.value if order.refund_status else None,
        refund_amount=order.refund_amount,
        refund_reason=order.refund_reason,
        refund_time=order.refund_time,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
    )


def to_stats_dto(buckets: Dict[str, StatusBucket]) -> StatsDTO:
    total = sum(b.count for b in buckets.values())
    total_amount = sum(b.amount for b in buckets.values())
    return StatsDTO(
        total=total,
        total_amount=total_amount,
        total_amount_yuan=format_yuan(total_amount),
        status_stats={
            status: StatusStatDTO(count=b.count, amount=b.amount, amount_yuan=format_yuan(b.amount))
            for status, b in buckets.items()
        },
    )
