"""
支付领域实体 - 支付记录聚合根

每次支付尝试对应一条记录，out_trade_no 为幂等键；网关结果通过
apply_gateway_result 合并，重复、乱序的通知都收敛到同一结果。
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, TYPE_CHECKING

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.common.money import Money
from domain.common.outcome import ApplyOutcome
from domain.order.numbering import generate_out_trade_no
from domain.payment.events import (
    PaymentCanceled,
    PaymentEvent,
    PaymentFailed,
    PaymentInitiated,
    PaymentRefundFailed,
    PaymentRefundRequested,
    PaymentRefunded,
    PaymentSucceeded,
)

if TYPE_CHECKING:
    from domain.order.entity import Order


MAX_TRADE_NO_BYTES = 32


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    PENDING = "PENDING"        # 待支付
    PAID = "PAID"              # 已支付
    FAILED = "FAILED"          # 支付失败
    REFUNDING = "REFUNDING"    # 退款中
    REFUNDED = "REFUNDED"      # 已退款
    CANCELLED = "CANCELLED"    # 已取消


class PaymentRefundStatus(str, Enum):
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TradeType(str, Enum):
    JSAPI = "JSAPI"
    NATIVE = "NATIVE"
    APP = "APP"
    H5 = "H5"


class ResultKind(str, Enum):
    """网关结果归一化后的三种结论"""
    SUCCESS = "success"
    PENDING = "pending"
    FAILURE = "failure"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GatewayResult:
    """已验签或主动查询得到的支付结果"""

    out_trade_no: str
    kind: ResultKind
    transaction_id: Optional[str] = None
    total_fee: Optional[int] = None
    cash_fee: Optional[int] = None
    fee_type: Optional[str] = None
    time_end: Optional[datetime] = None
    err_code: Optional[str] = None
    err_code_des: Optional[str] = None
    provider_state: Optional[str] = None


@dataclass(frozen=True)
class RefundResult:
    """网关退款结果"""

    out_trade_no: str
    kind: ResultKind
    out_refund_no: Optional[str] = None
    refund_id: Optional[str] = None
    refund_fee: Optional[int] = None
    success_time: Optional[datetime] = None
    reason: Optional[str] = None
    provider_state: Optional[str] = None


@dataclass
class PaymentRecord:
    """
    支付记录聚合根 - 管理单次支付尝试的生命周期

    业务规则：
    1. out_trade_no 全局唯一且不超过 32 字节
    2. total_fee 以分为单位且至少为 1
    3. 成功是粘性的：PAID 之后的失败结果一律忽略
    4. PAID 之后只允许进入退款分支
    5. 退款金额不能超过支付金额
    """

    id: Optional[int]
    out_trade_no: str
    order_no: str
    platform_id: str
    total_fee: int
    status: PaymentStatus = PaymentStatus.PENDING
    provider: str = "wechat"
    currency: str = "CNY"
    description: Optional[str] = None
    payer_openid: Optional[str] = None
    trade_type: TradeType = TradeType.JSAPI
    notify_url: Optional[str] = None
    prepay_id: Optional[str] = None
    code_url: Optional[str] = None

    # 成功回执
    transaction_id: Optional[str] = None
    time_end: Optional[datetime] = None
    cash_fee: Optional[int] = None
    fee_type: Optional[str] = None

    # 失败回执
    err_code: Optional[str] = None
    err_code_des: Optional[str] = None

    # 退款
    out_refund_no: Optional[str] = None
    refund_fee: Optional[int] = None
    refund_reason: Optional[str] = None
    refund_status: Optional[PaymentRefundStatus] = None
    refund_id: Optional[str] = None
    refund_success_time: Optional[datetime] = None

    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    pending_events: List[PaymentEvent] = field(default_factory=list, repr=False, compare=False)

    def __post_init__(self):
        """初始化后验证"""
        self._validate_trade_no()
        self._validate_amount()
        self._normalize_timestamps()

    def _validate_trade_no(self) -> None:
        if not self.out_trade_no or len(self.out_trade_no.encode("utf-8")) > MAX_TRADE_NO_BYTES:
            raise DomainValidationException(
                f"out_trade_no must be 1..{MAX_TRADE_NO_BYTES} bytes: {self.out_trade_no!r}",
                field="out_trade_no",
            )

    def _validate_amount(self) -> None:
        """业务规则：金额必须大于0"""
        if Money(self.total_fee).minor < 1:
            raise DomainValidationException(
                f"total_fee must be at least 1: {self.total_fee}",
                field="total_fee",
            )

    def _normalize_timestamps(self) -> None:
        """规范化所有时间戳为 UTC"""
        self.time_end = _ensure_utc(self.time_end)
        self.refund_success_time = _ensure_utc(self.refund_success_time)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    def _touch(self) -> datetime:
        self.updated_at = _now()
        return self.updated_at

    def _record(self, event_type, **kwargs) -> None:
        self.pending_events.append(
            event_type(
                out_trade_no=self.out_trade_no,
                order_no=self.order_no,
                provider=self.provider,
                provider_ref=self.transaction_id,
                **kwargs,
            )
        )

    def pull_events(self) -> List[PaymentEvent]:
        events = list(self.pending_events)
        self.pending_events.clear()
        return events

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------
    @classmethod
    def initiate(
        cls,
        order: "Order",
        payer_openid: Optional[str],
        *,
        amount: Optional[int] = None,
        description: Optional[str] = None,
        trade_type: TradeType = TradeType.JSAPI,
        notify_url: Optional[str] = None,
        out_trade_no: Optional[str] = None,
        provider: str = "wechat",
    ) -> "PaymentRecord":
        """为待支付订单创建一次新的支付尝试，调用网关前需先持久化"""
        from domain.order.entity import OrderStatus

        if order.status != OrderStatus.PENDING:
            raise InvalidTransitionException("order", order.effective_status, "pay")
        amount = order.total_amount if amount is None else amount
        if amount != order.total_amount:
            raise DomainValidationException(
                f"payment amount {amount} does not match order total {order.total_amount}",
                field="total_fee",
                details={"total_fee": amount, "order_total": order.total_amount},
            )
        if trade_type == TradeType.JSAPI and not payer_openid:
            raise DomainValidationException("JSAPI payments require the payer openid", field="payer_openid")

        now = _now()
        record = cls(
            id=None,
            out_trade_no=out_trade_no or generate_out_trade_no(),
            order_no=order.order_no,
            platform_id=order.platform_id,
            total_fee=amount,
            provider=provider,
            description=description,
            payer_openid=payer_openid,
            trade_type=trade_type,
            notify_url=notify_url,
            created_at=now,
            updated_at=now,
        )
        record._record(PaymentInitiated, amount=amount)
        return record

    def attach_prepay(self, prepay_id: Optional[str], code_url: Optional[str] = None) -> None:
        self.prepay_id = prepay_id
        self.code_url = code_url
        self._touch()

    # ------------------------------------------------------------------
    # 网关结果合并
    # ------------------------------------------------------------------
    def apply_gateway_result(self, result: GatewayResult) -> ApplyOutcome:
        """
        合并网关支付结果

        业务规则：
        1. 结果顺序无关、重复无害
        2. 成功是粘性的，PAID 后的失败忽略
        3. 同一记录出现两个不同的 transaction_id 视为异常
        4. 网关实收金额必须与下单金额一致
        """
        if result.out_trade_no != self.out_trade_no:
            raise DomainValidationException(
                f"result for {result.out_trade_no} applied to {self.out_trade_no}",
                field="out_trade_no",
            )

        if result.kind == ResultKind.PENDING:
            return ApplyOutcome.IGNORED

        if result.kind == ResultKind.FAILURE:
            return self._apply_failure(result)

        return self._apply_success(result)

    def _apply_success(self, result: GatewayResult) -> ApplyOutcome:
        if self.status in (PaymentStatus.PAID, PaymentStatus.REFUNDING, PaymentStatus.REFUNDED):
            if result.transaction_id and self.transaction_id and result.transaction_id != self.transaction_id:
                raise InvalidTransitionException(
                    "payment", self.status.value, f"apply transaction {result.transaction_id} to"
                )
            return ApplyOutcome.ALREADY_PROCESSED

        if self.status == PaymentStatus.CANCELLED:
            raise InvalidTransitionException("payment", self.status.value, "mark paid")

        self._check_paid_amount(result)

        # PENDING 或 FAILED：网关为准，钱已到账
        self.status = PaymentStatus.PAID
        self.transaction_id = result.transaction_id
        self.time_end = _ensure_utc(result.time_end) or _now()
        self.cash_fee = result.cash_fee if result.cash_fee is not None else self.total_fee
        self.fee_type = result.fee_type or self.currency
        self.err_code = None
        self.err_code_des = None
        self._touch()
        self._record(PaymentSucceeded, amount=self.cash_fee)
        return ApplyOutcome.APPLIED

    def _check_paid_amount(self, result: GatewayResult) -> None:
        for name in ("total_fee", "cash_fee"):
            reported = getattr(result, name)
            if reported is not None and reported != self.total_fee:
                raise DomainValidationException(
                    f"gateway {name} {reported} does not match expected {self.total_fee}",
                    field=name,
                    details={name: reported, "expected": self.total_fee},
                )

    def _apply_failure(self, result: GatewayResult) -> ApplyOutcome:
        if self.status in (PaymentStatus.PAID, PaymentStatus.REFUNDING, PaymentStatus.REFUNDED):
            return ApplyOutcome.IGNORED
        if self.status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            return ApplyOutcome.ALREADY_PROCESSED

        self.status = PaymentStatus.FAILED
        self.err_code = result.err_code or result.provider_state
        self.err_code_des = result.err_code_des
        self._touch()
        self._record(PaymentFailed, reason=self.err_code_des or self.err_code)
        return ApplyOutcome.APPLIED

    def mark_polled(self) -> None:
        """网关仍未给出结果：记录本次查询时间，扫描据此轮转"""
        if self.status != PaymentStatus.PENDING:
            raise InvalidTransitionException("payment", self.status.value, "poll")
        self._touch()

    def cancel(self) -> None:
        """取消待支付的尝试（订单取消或发起新尝试时）"""
        if self.status != PaymentStatus.PENDING:
            raise InvalidTransitionException("payment", self.status.value, "cancel")
        self.status = PaymentStatus.CANCELLED
        self._touch()
        self._record(PaymentCanceled)

    # ------------------------------------------------------------------
    # 退款分支
    # ------------------------------------------------------------------
    def initiate_refund(self, refund_fee: int, reason: Optional[str], out_refund_no: str) -> None:
        """
        发起退款

        业务规则：仅 PAID；0 < refund_fee <= total_fee
        """
        if self.status != PaymentStatus.PAID:
            raise InvalidTransitionException("payment", self.status.value, "refund")
        fee = Money(refund_fee)
        if fee.minor <= 0 or fee.minor > self.total_fee:
            raise DomainValidationException(
                f"refund_fee must be within 1..{self.total_fee}: {refund_fee}",
                field="refund_fee",
                details={"refund_fee": refund_fee, "total_fee": self.total_fee},
            )
        self.status = PaymentStatus.REFUNDING
        self.out_refund_no = out_refund_no
        self.refund_fee = refund_fee
        self.refund_reason = reason
        self.refund_status = PaymentRefundStatus.PROCESSING
        self.refund_id = None
        self.refund_success_time = None
        self._touch()
        self._record(PaymentRefundRequested, out_refund_no=out_refund_no, amount=refund_fee)

    def confirm_refund(self, refund_id: Optional[str], success_time: Optional[datetime] = None) -> ApplyOutcome:
        if self.status == PaymentStatus.REFUNDED:
            if refund_id and self.refund_id and refund_id != self.refund_id:
                raise InvalidTransitionException("payment", self.status.value, f"confirm refund {refund_id} of")
            return ApplyOutcome.ALREADY_PROCESSED
        if self.status != PaymentStatus.REFUNDING:
            raise InvalidTransitionException("payment", self.status.value, "confirm refund of")
        return self._mark_refunded(refund_id, success_time)

    def _mark_refunded(self, refund_id: Optional[str], success_time: Optional[datetime]) -> ApplyOutcome:
        self.status = PaymentStatus.REFUNDED
        self.refund_status = PaymentRefundStatus.SUCCESS
        self.refund_id = refund_id
        self.refund_success_time = _ensure_utc(success_time) or _now()
        self._touch()
        self._record(PaymentRefunded, refund_id=refund_id or "", amount=self.refund_fee or 0)
        return ApplyOutcome.APPLIED

    def fail_refund(self, reason: Optional[str] = None) -> ApplyOutcome:
        """退款失败：回到 PAID，允许再次发起"""
        if self.status == PaymentStatus.REFUNDED:
            return ApplyOutcome.IGNORED
        if self.status == PaymentStatus.PAID and self.refund_status == PaymentRefundStatus.FAILED:
            return ApplyOutcome.ALREADY_PROCESSED
        if self.status != PaymentStatus.REFUNDING:
            raise InvalidTransitionException("payment", self.status.value, "fail refund of")

        self.status = PaymentStatus.PAID
        self.refund_status = PaymentRefundStatus.FAILED
        if reason:
            self.refund_reason = reason
        self._touch()
        self._record(PaymentRefundFailed, reason=reason)
        return ApplyOutcome.APPLIED

    def apply_refund_result(self, result: RefundResult) -> ApplyOutcome:
        """
        合并网关退款结果

        业务规则：
        1. 其它退款单号的结果忽略
        2. 同一退款单号先被判失败、后被网关确认成功时，以网关成功为准
        """
        if result.out_refund_no and self.out_refund_no and result.out_refund_no != self.out_refund_no:
            return ApplyOutcome.IGNORED
        if result.kind == ResultKind.PENDING:
            return ApplyOutcome.IGNORED
        if result.kind == ResultKind.SUCCESS:
            if (
                self.status == PaymentStatus.PAID
                and self.refund_status == PaymentRefundStatus.FAILED
                and result.out_refund_no
                and result.out_refund_no == self.out_refund_no
            ):
                return self._mark_refunded(result.refund_id, result.success_time)
            return self.confirm_refund(result.refund_id, result.success_time)
        return self.fail_refund(result.reason or result.provider_state)
