"""In-memory doubles for the unit of work and the payment gateway."""
import copy
from datetime import datetime
from typing import Dict, List, Optional

from application.dtos.payments import PrepayHandle, PrepayRequest, RefundCall, VerifiedNotification
from domain.common.exceptions import (
    AuthenticityException,
    ConcurrentModificationException,
    OrderAlreadyExistsException,
    PaymentAlreadyExistsException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import Order, OrderStatus
from domain.order.repository import OrderFilter, OrderRepository, StatusBucket
from domain.payment.entity import GatewayResult, PaymentRecord, PaymentStatus, RefundResult, ResultKind
from domain.payment.repository import PaymentRepository


class InMemoryStore:
    def __init__(self) -> None:
        self.orders: Dict[str, Order] = {}
        self.payments: Dict[str, PaymentRecord] = {}
        # number of upcoming updates that lose the optimistic race
        self.conflicts_to_inject = 0
        self.commits = 0


def _copy(entity):
    clone = copy.deepcopy(entity)
    clone.pending_events = []
    return clone


def _in_range(created: Optional[datetime], start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start and (created is None or created < start):
        return False
    if end and (created is None or created > end):
        return False
    return True


class _StagedRepo:
    def __init__(self, store: InMemoryStore, committed: dict, staged: dict, entity: str):
        self._store = store
        self._committed = committed
        self._staged = staged
        self._entity = entity

    def _current(self, key):
        if key in self._staged:
            return self._staged[key]
        return self._committed.get(key)

    def _all(self) -> list:
        merged = dict(self._committed)
        merged.update(self._staged)
        return list(merged.values())

    def _conditional_update(self, key: str, entity, expected_status, expected_version):
        if self._store.conflicts_to_inject > 0:
            self._store.conflicts_to_inject -= 1
            raise ConcurrentModificationException(self._entity, key, expected_version)
        current = self._current(key)
        if current is None or current.status != expected_status or current.version != expected_version:
            raise ConcurrentModificationException(self._entity, key, expected_version)
        entity.version = expected_version + 1
        self._staged[key] = _copy(entity)
        return entity


class InMemoryOrderRepository(_StagedRepo, OrderRepository):
    async def create(self, order: Order) -> Order:
        if self._current(order.order_no) is not None:
            raise OrderAlreadyExistsException(order.order_no)
        order.id = len(self._all()) + 1
        self._staged[order.order_no] = _copy(order)
        return order

    async def get_by_order_no(self, order_no: str) -> Optional[Order]:
        current = self._current(order_no)
        return _copy(current) if current else None

    async def update(self, order: Order, *, expected_status: OrderStatus, expected_version: int) -> Order:
        return self._conditional_update(order.order_no, order, expected_status, expected_version)

    def _filtered(self, filters: OrderFilter) -> List[Order]:
        rows = []
        for o in self._all():
            if filters.platform_id and o.platform_id != filters.platform_id:
                continue
            if filters.status and o.status != filters.status:
                continue
            if filters.user_id and o.user_id != filters.user_id:
                continue
            if filters.openid and o.openid != filters.openid:
                continue
            if filters.keyword and filters.keyword not in o.order_no:
                continue
            if not _in_range(o.created_at, filters.start_date, filters.end_date):
                continue
            rows.append(o)
        return sorted(rows, key=lambda o: (o.created_at, o.id), reverse=True)

    async def list(self, filters: OrderFilter, skip: int = 0, limit: int = 20) -> List[Order]:
        return [_copy(o) for o in self._filtered(filters)[skip:skip + limit]]

    async def count(self, filters: OrderFilter) -> int:
        return len(self._filtered(filters))

    async def stats_by_status(self, platform_id, start_date=None, end_date=None) -> Dict[str, StatusBucket]:
        buckets: Dict[str, StatusBucket] = {}
        for o in self._all():
            if o.platform_id != platform_id or not _in_range(o.created_at, start_date, end_date):
                continue
            bucket = buckets.setdefault(o.status.value, StatusBucket(count=0, amount=0))
            bucket.count += 1
            bucket.amount += o.total_amount
        return buckets


class InMemoryPaymentRepository(_StagedRepo, PaymentRepository):
    async def create(self, payment: PaymentRecord) -> PaymentRecord:
        if self._current(payment.out_trade_no) is not None:
            raise PaymentAlreadyExistsException(payment.out_trade_no)
        payment.id = len(self._all()) + 1
        self._staged[payment.out_trade_no] = _copy(payment)
        return payment

    async def get_by_out_trade_no(self, out_trade_no: str) -> Optional[PaymentRecord]:
        current = self._current(out_trade_no)
        return _copy(current) if current else None

    async def get_by_out_refund_no(self, out_refund_no: str) -> Optional[PaymentRecord]:
        for p in self._all():
            if p.out_refund_no == out_refund_no:
                return _copy(p)
        return None

    async def list_by_order_no(self, order_no: str) -> List[PaymentRecord]:
        rows = [p for p in self._all() if p.order_no == order_no]
        return [_copy(p) for p in sorted(rows, key=lambda p: (p.created_at, p.id), reverse=True)]

    async def update(self, payment: PaymentRecord, *, expected_status: PaymentStatus, expected_version: int) -> PaymentRecord:
        return self._conditional_update(payment.out_trade_no, payment, expected_status, expected_version)

    async def list_stale_pending(self, older_than: datetime, limit: int = 100) -> List[PaymentRecord]:
        rows = [p for p in self._all() if p.status == PaymentStatus.PENDING and p.created_at < older_than]
        return [_copy(p) for p in sorted(rows, key=lambda p: (p.updated_at, p.id))[:limit]]

    async def list_stuck_refunding(self, older_than: datetime, limit: int = 100) -> List[PaymentRecord]:
        rows = [p for p in self._all() if p.status == PaymentStatus.REFUNDING and p.updated_at < older_than]
        return [_copy(p) for p in sorted(rows, key=lambda p: p.updated_at)[:limit]]

    async def stats_by_status(self, platform_id, start_date=None, end_date=None) -> Dict[str, StatusBucket]:
        buckets: Dict[str, StatusBucket] = {}
        for p in self._all():
            if p.platform_id != platform_id or not _in_range(p.created_at, start_date, end_date):
                continue
            bucket = buckets.setdefault(p.status.value, StatusBucket(count=0, amount=0))
            bucket.count += 1
            bucket.amount += p.total_fee
        return buckets


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """Writes are staged per unit of work and only reach the store on commit."""

    def __init__(self, store: InMemoryStore, *, readonly: bool = False) -> None:
        super().__init__(readonly=readonly)
        self.store = store

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        self._staged_orders: dict = {}
        self._staged_payments: dict = {}
        self.order_repository = InMemoryOrderRepository(self.store, self.store.orders, self._staged_orders, "order")
        self.payment_repository = InMemoryPaymentRepository(
            self.store, self.store.payments, self._staged_payments, "payment"
        )
        return self

    async def commit(self) -> None:
        if not self._readonly:
            self.store.orders.update(self._staged_orders)
            self.store.payments.update(self._staged_payments)
            self.store.commits += 1
        self._staged_orders.clear()
        self._staged_payments.clear()
        self._committed = True

    async def rollback(self) -> None:
        self._staged_orders.clear()
        self._staged_payments.clear()
        self._committed = False


class StubGateway:
    """Scriptable PaymentGateway double that records every call."""

    provider = "wechat"

    def __init__(self) -> None:
        self.prepay_requests: List[PrepayRequest] = []
        self.prepay_error: Optional[Exception] = None
        self.statuses: Dict[str, GatewayResult] = {}
        self.refund_calls: List[RefundCall] = []
        self.refund_error: Optional[Exception] = None
        self.refund_response: Optional[RefundResult] = None
        self.refund_statuses: Dict[str, RefundResult] = {}
        self.closed: List[str] = []
        self.notification: Optional[VerifiedNotification] = None

    async def create_prepay(self, req: PrepayRequest) -> PrepayHandle:
        self.prepay_requests.append(req)
        if self.prepay_error is not None:
            raise self.prepay_error
        return PrepayHandle(
            out_trade_no=req.out_trade_no,
            prepay_id=f"wx_prepay_{len(self.prepay_requests)}",
            client_params={"package": f"prepay_id=wx_prepay_{len(self.prepay_requests)}"},
        )

    async def verify_notification(self, headers, body: bytes) -> VerifiedNotification:
        if body == b"forged" or self.notification is None:
            raise AuthenticityException("signature verification failed", provider=self.provider)
        return self.notification

    async def query_status(self, out_trade_no: str) -> GatewayResult:
        return self.statuses.get(out_trade_no) or GatewayResult(out_trade_no=out_trade_no, kind=ResultKind.PENDING)

    async def close(self, out_trade_no: str) -> None:
        self.closed.append(out_trade_no)

    async def refund(self, req: RefundCall) -> RefundResult:
        self.refund_calls.append(req)
        if self.refund_error is not None:
            raise self.refund_error
        if self.refund_response is not None:
            return self.refund_response
        return RefundResult(out_trade_no=req.out_trade_no, kind=ResultKind.PENDING, out_refund_no=req.out_refund_no)

    async def query_refund(self, out_refund_no: str, out_trade_no: str) -> RefundResult:
        return self.refund_statuses.get(out_refund_no) or RefundResult(
            out_trade_no=out_trade_no, kind=ResultKind.PENDING, out_refund_no=out_refund_no
        )


def paid_result(out_trade_no: str, amount: int, transaction_id: str = "4200000001") -> GatewayResult:
    return GatewayResult(
        out_trade_no=out_trade_no,
        kind=ResultKind.SUCCESS,
        transaction_id=transaction_id,
        total_fee=amount,
        cash_fee=amount,
        fee_type="CNY",
        provider_state="SUCCESS",
    )


def payment_notification(result: GatewayResult, event_id: str = "EV-1") -> VerifiedNotification:
    return VerifiedNotification(
        id=event_id,
        provider="wechat",
        kind="payment",
        event_type="TRANSACTION.SUCCESS",
        payment=result,
    )


def refund_notification(result: RefundResult, event_id: str = "EV-R1") -> VerifiedNotification:
    return VerifiedNotification(
        id=event_id,
        provider="wechat",
        kind="refund",
        event_type="REFUND.SUCCESS",
        refund=result,
    )
