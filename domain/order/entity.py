"""
订单领域实体 - 订单聚合根

金额全部使用整数分（minor units），派生金额只通过 calculate_amount 统一重算。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.common.money import Money
from domain.common.outcome import ApplyOutcome
from domain.order.events import (
    OrderCancelled,
    OrderCreated,
    OrderDelivered,
    OrderEvent,
    OrderPaid,
    OrderRefundRequested,
    OrderRefunded,
    OrderShipped,
)
from domain.order.numbering import generate_order_no


MAX_MESSAGE_LENGTH = 500


class OrderStatus(str, Enum):
    """订单状态枚举"""
    PENDING = "PENDING"        # 待支付
    PAID = "PAID"              # 已支付
    SHIPPED = "SHIPPED"        # 已发货
    DELIVERED = "DELIVERED"    # 已收货
    CANCELLED = "CANCELLED"    # 已取消
    REFUNDED = "REFUNDED"      # 已退款
    COMPLETED = "COMPLETED"    # 已完成


class OrderPaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"


class OrderRefundStatus(str, Enum):
    REFUNDING = "REFUNDING"
    REFUNDED = "REFUNDED"
    FAILED = "FAILED"


class OrderType(str, Enum):
    PRODUCT = "PRODUCT"
    SERVICE = "SERVICE"
    VIRTUAL = "VIRTUAL"
    SUBSCRIPTION = "SUBSCRIPTION"


class PaymentMethod(str, Enum):
    WECHAT = "WECHAT"
    ALIPAY = "ALIPAY"
    BALANCE = "BALANCE"
    OFFLINE = "OFFLINE"


TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.COMPLETED})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _check_message(value: Optional[str], field_name: str) -> None:
    if value is not None and len(value) > MAX_MESSAGE_LENGTH:
        raise DomainValidationException(
            f"{field_name} exceeds {MAX_MESSAGE_LENGTH} characters",
            field=field_name,
        )


@dataclass
class OrderItem:
    """订单商品行，total_price 由单价 × 数量计算，不接受外部赋值"""

    product_id: str
    product_name: str
    unit_price: int
    quantity: int
    total_price: int = 0
    sku_id: Optional[str] = None
    sku_name: Optional[str] = None
    product_image: Optional[str] = None
    attributes: dict = field(default_factory=dict)

    def __post_init__(self):
        if not self.product_id:
            raise DomainValidationException("product_id is required", field="items.product_id")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise DomainValidationException(
                f"quantity must be an integer >= 1: {self.quantity!r}",
                field="items.quantity",
            )
        price = Money(self.unit_price).ensure_non_negative("items.unit_price")
        self.total_price = price.multiply(self.quantity).minor
        if self.attributes is None:
            self.attributes = {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price": self.unit_price,
            "quantity": self.quantity,
            "total_price": self.total_price,
            "sku_id": self.sku_id,
            "sku_name": self.sku_name,
            "product_image": self.product_image,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OrderItem":
        return cls(
            product_id=data["product_id"],
            product_name=data.get("product_name") or "",
            unit_price=data["unit_price"],
            quantity=data["quantity"],
            sku_id=data.get("sku_id"),
            sku_name=data.get("sku_name"),
            product_image=data.get("product_image"),
            attributes=data.get("attributes") or {},
        )


@dataclass
class ShippingAddress:
    receiver_name: str
    receiver_phone: str
    province: str
    city: str
    district: str
    address: str
    postal_code: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "receiver_name": self.receiver_name,
            "receiver_phone": self.receiver_phone,
            "province": self.province,
            "city": self.city,
            "district": self.district,
            "address": self.address,
            "postal_code": self.postal_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ShippingAddress":
        return cls(**{k: data.get(k) for k in (
            "receiver_name", "receiver_phone", "province", "city", "district", "address", "postal_code"
        )})


@dataclass
class LogisticsTrack:
    time: datetime
    status: str
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {"time": _ensure_utc(self.time).isoformat(), "status": self.status, "description": self.description}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogisticsTrack":
        t = data.get("time")
        return cls(
            time=_ensure_utc(datetime.fromisoformat(t) if isinstance(t, str) else t),
            status=data.get("status") or "",
            description=data.get("description") or "",
        )


@dataclass
class LogisticsInfo:
    """物流信息"""

    company: str
    tracking_number: str
    status: str = "SHIPPED"
    last_update: Optional[datetime] = None
    tracks: List[LogisticsTrack] = field(default_factory=list)

    def __post_init__(self):
        if not self.company or not self.tracking_number:
            raise DomainValidationException(
                "logistics company and tracking number are required",
                field="logistics",
            )
        self.last_update = _ensure_utc(self.last_update)

    def to_dict(self) -> dict[str, Any]:
        return {
            "company": self.company,
            "tracking_number": self.tracking_number,
            "status": self.status,
            "last_update": self.last_update.isoformat() if self.last_update else None,
            "tracks": [t.to_dict() for t in self.tracks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LogisticsInfo":
        lu = data.get("last_update")
        return cls(
            company=data["company"],
            tracking_number=data["tracking_number"],
            status=data.get("status") or "SHIPPED",
            last_update=datetime.fromisoformat(lu) if isinstance(lu, str) else lu,
            tracks=[LogisticsTrack.from_dict(t) for t in data.get("tracks") or []],
        )


@dataclass
class Order:
    """
    订单聚合根 - 管理订单生命周期

    业务规则：
    1. 订单号全局唯一，归属租户 platform_id
    2. user_id 与 openid 必须且只能设置一个
    3. total_amount = subtotal + shipping_fee - discount_amount，且不能为负
    4. 商品行在离开 PENDING 后不可变
    5. 状态转换必须遵循状态机，支付后的取消只能走退款
    6. 退款金额不能超过实付金额
    """

    id: Optional[int]
    order_no: str
    platform_id: str
    items: List[OrderItem]
    status: OrderStatus = OrderStatus.PENDING
    payment_status: OrderPaymentStatus = OrderPaymentStatus.UNPAID
    order_type: OrderType = OrderType.PRODUCT

    # 归属
    user_id: Optional[str] = None
    openid: Optional[str] = None

    # 金额（分）
    item_count: int = 0
    subtotal: int = 0
    shipping_fee: int = 0
    discount_amount: int = 0
    total_amount: int = 0
    paid_amount: int = 0

    # 支付
    payment_method: Optional[PaymentMethod] = None
    payment_id: Optional[str] = None
    payment_time: Optional[datetime] = None

    # 收货
    shipping_address: Optional[ShippingAddress] = None
    logistics: Optional[LogisticsInfo] = None
    shipping_time: Optional[datetime] = None
    delivery_time: Optional[datetime] = None
    completed_time: Optional[datetime] = None

    # 备注
    buyer_message: Optional[str] = None
    seller_message: Optional[str] = None

    # 退款
    refund_status: Optional[OrderRefundStatus] = None
    refund_amount: Optional[int] = None
    refund_reason: Optional[str] = None
    refund_time: Optional[datetime] = None

    source: str = "miniprogram"
    metadata: dict = field(default_factory=dict)
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    pending_events: List[OrderEvent] = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self):
        self._normalize_timestamps()
        if self.metadata is None:
            self.metadata = {}

    def _normalize_timestamps(self) -> None:
        for name in ("payment_time", "shipping_time", "delivery_time", "completed_time",
                     "refund_time", "created_at", "updated_at"):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    # ------------------------------------------------------------------
    # 创建与金额计算
    # ------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        items: Iterable[OrderItem],
        platform_id: str,
        *,
        user_id: Optional[str] = None,
        openid: Optional[str] = None,
        shipping_address: Optional[ShippingAddress] = None,
        shipping_fee: int = 0,
        discount_amount: int = 0,
        order_no: Optional[str] = None,
        order_type: OrderType = OrderType.PRODUCT,
        buyer_message: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> "Order":
        """创建待支付订单；校验失败时不产生任何实体"""
        items = list(items or [])
        if not items:
            raise DomainValidationException("Order must contain at least one item", field="items")
        if bool(user_id) == bool(openid):
            raise DomainValidationException(
                "Exactly one of user_id or openid must identify the buyer",
                field="user_id",
            )
        _check_message(buyer_message, "buyer_message")
        Money(shipping_fee).ensure_non_negative("shipping_fee")
        Money(discount_amount).ensure_non_negative("discount_amount")

        now = _now()
        order = cls(
            id=None,
            order_no=order_no or generate_order_no(platform_id),
            platform_id=platform_id,
            items=items,
            order_type=order_type,
            user_id=user_id,
            openid=openid,
            shipping_fee=shipping_fee,
            discount_amount=discount_amount,
            shipping_address=shipping_address,
            buyer_message=buyer_message,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        order.calculate_amount()
        order._record(OrderCreated(order_no=order.order_no, platform_id=platform_id, amount=order.total_amount))
        return order

    def calculate_amount(self) -> "Order":
        """统一重算 item_count / subtotal / total_amount，要么全部生效要么都不生效"""
        subtotal = Money.zero()
        item_count = 0
        for item in self.items:
            subtotal = subtotal + Money(item.unit_price).multiply(item.quantity)
            item_count += item.quantity
        total = (subtotal + Money(self.shipping_fee) - Money(self.discount_amount)).ensure_non_negative("total_amount")

        self.subtotal = subtotal.minor
        self.item_count = item_count
        self.total_amount = total.minor
        return self

    # ------------------------------------------------------------------
    # 状态机
    # ------------------------------------------------------------------
    @property
    def refund_in_progress(self) -> bool:
        return self.refund_status == OrderRefundStatus.REFUNDING

    @property
    def effective_status(self) -> str:
        """状态机视角的当前状态，退款中单独表示为 REFUNDING"""
        if self.refund_in_progress:
            return "REFUNDING"
        return self.status.value

    def _require(self, allowed: Iterable[OrderStatus], action: str) -> None:
        if self.status in TERMINAL_STATUSES or self.status not in set(allowed) or self.refund_in_progress:
            raise InvalidTransitionException("order", self.effective_status, action)

    def _touch(self) -> datetime:
        self.updated_at = _now()
        return self.updated_at

    def _record(self, event: OrderEvent) -> None:
        self.pending_events.append(event)

    def pull_events(self) -> List[OrderEvent]:
        events = list(self.pending_events)
        self.pending_events.clear()
        return events

    def mark_as_paid(
        self,
        payment_amount: int,
        payment_reference: Optional[str],
        payment_method: PaymentMethod = PaymentMethod.WECHAT,
    ) -> ApplyOutcome:
        """
        标记已支付

        业务规则：仅 PENDING 可转为 PAID；已取消订单拒绝；其余状态视为重复通知，不报错
        """
        if self.status == OrderStatus.CANCELLED:
            raise InvalidTransitionException("order", self.status.value, "pay")
        if self.status != OrderStatus.PENDING:
            return ApplyOutcome.ALREADY_PROCESSED
        Money(payment_amount).ensure_non_negative("paid_amount")

        self.status = OrderStatus.PAID
        self.payment_status = OrderPaymentStatus.PAID
        self.paid_amount = payment_amount
        self.payment_id = payment_reference
        self.payment_method = payment_method
        self.payment_time = self._touch()
        self._record(OrderPaid(order_no=self.order_no, platform_id=self.platform_id, amount=payment_amount))
        return ApplyOutcome.APPLIED

    def ship(self, logistics: LogisticsInfo) -> None:
        """发货：仅已支付且无进行中退款的订单"""
        self._require({OrderStatus.PAID}, "ship")
        now = self._touch()
        if logistics.last_update is None:
            logistics.last_update = now
        self.logistics = logistics
        self.status = OrderStatus.SHIPPED
        self.shipping_time = now
        self._record(OrderShipped(order_no=self.order_no, platform_id=self.platform_id))

    def confirm_delivery(self) -> None:
        self._require({OrderStatus.SHIPPED}, "confirm delivery of")
        self.status = OrderStatus.DELIVERED
        self.delivery_time = self._touch()
        self._record(OrderDelivered(order_no=self.order_no, platform_id=self.platform_id))

    def complete(self) -> None:
        """结算/评价完成后由外部协作方触发"""
        self._require({OrderStatus.DELIVERED}, "complete")
        self.status = OrderStatus.COMPLETED
        self.completed_time = self._touch()

    def cancel(self, reason: Optional[str] = None) -> None:
        """取消订单：仅 PENDING，已支付订单只能退款"""
        self._require({OrderStatus.PENDING}, "cancel")
        _check_message(reason, "reason")
        self.status = OrderStatus.CANCELLED
        if reason:
            self.seller_message = reason
        self._touch()
        self._record(OrderCancelled(order_no=self.order_no, platform_id=self.platform_id, reason=reason))

    def request_refund(self, amount: int, reason: Optional[str] = None) -> None:
        """
        申请退款

        业务规则：
        1. 仅 PAID / SHIPPED 且没有进行中或已完成的退款
        2. 0 < amount <= paid_amount
        3. 不直接改为 REFUNDED，由支付记录确认后再转换
        """
        if self.refund_status == OrderRefundStatus.REFUNDED:
            raise InvalidTransitionException("order", self.effective_status, "refund")
        self._require({OrderStatus.PAID, OrderStatus.SHIPPED}, "refund")
        refund = Money(amount)
        if refund.minor <= 0:
            raise DomainValidationException(f"refund amount must be positive: {amount}", field="refund_amount")
        if refund.minor > self.paid_amount:
            raise DomainValidationException(
                f"refund amount {amount} exceeds paid amount {self.paid_amount}",
                field="refund_amount",
                details={"refund_amount": amount, "paid_amount": self.paid_amount},
            )
        _check_message(reason, "refund_reason")

        self.refund_status = OrderRefundStatus.REFUNDING
        self.refund_amount = amount
        self.refund_reason = reason
        self.refund_time = None
        self._touch()
        self._record(OrderRefundRequested(order_no=self.order_no, platform_id=self.platform_id, amount=amount))

    def confirm_refund(self) -> ApplyOutcome:
        """支付记录确认退款成功后调用；此前被判失败的退款也以确认为准"""
        if self.status == OrderStatus.REFUNDED:
            return ApplyOutcome.ALREADY_PROCESSED
        late = self.refund_status == OrderRefundStatus.FAILED
        if not (self.refund_in_progress or late):
            raise InvalidTransitionException("order", self.effective_status, "confirm refund of")
        self.status = OrderStatus.REFUNDED
        self.refund_status = OrderRefundStatus.REFUNDED
        self.refund_time = self._touch()
        self._record(OrderRefunded(order_no=self.order_no, platform_id=self.platform_id, amount=self.refund_amount or 0))
        return ApplyOutcome.APPLIED

    def fail_refund(self) -> None:
        if not self.refund_in_progress:
            raise InvalidTransitionException("order", self.effective_status, "fail refund of")
        self.refund_status = OrderRefundStatus.FAILED
        self._touch()

    def update_seller_message(self, message: Optional[str]) -> None:
        _check_message(message, "seller_message")
        self.seller_message = message
        self._touch()
