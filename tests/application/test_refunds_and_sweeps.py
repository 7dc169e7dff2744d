from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.orders import CreateOrderIn, OrderItemIn
from application.services.order_stats_service import OrderStatsService
from application.services.reconciliation_service import ReconciliationConfig, ReconciliationService
from domain.common.exceptions import DomainValidationException, GatewayException, InvalidTransitionException
from domain.order.entity import OrderRefundStatus, OrderStatus
from domain.payment.entity import PaymentRefundStatus, PaymentStatus, RefundResult, ResultKind
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentRecoverableError
from shared.codes.payment_codes import PaymentCode
from support import paid_result, payment_notification, refund_notification


def _cmd() -> CreateOrderIn:
    return CreateOrderIn(
        items=[
            OrderItemIn(product_id="p1", product_name="Tea", unit_price=1000, quantity=2),
            OrderItemIn(product_id="p2", product_name="Cup", unit_price=500, quantity=1),
        ],
        platform_id="shop1",
        openid="o-buyer",
        shipping_fee=200,
    )


async def _paid_order(service, gateway):
    order, intent = await service.create_order_and_pay(_cmd())
    gateway.notification = payment_notification(paid_result(intent.out_trade_no, 2700))
    await service.handle_gateway_notification({}, b"{}")
    return order.order_no, intent.out_trade_no


@pytest.mark.asyncio
async def test_refund_confirmed_by_notification(service, gateway, store):
    order_no, out_trade_no = await _paid_order(service, gateway)

    payment = await service.refund(out_trade_no, 2700, "damaged")
    assert payment.status == "REFUNDING"
    call = gateway.refund_calls[0]
    assert call.refund_fee == 2700
    assert call.total_fee == 2700
    assert call.transaction_id == "4200000001"
    assert call.out_refund_no == payment.out_refund_no

    order = await service.get_order(order_no)
    assert order.status == "PAID"
    assert order.refund_status == "REFUNDING"
    assert order.status_text == "退款中"

    done = RefundResult(
        out_trade_no=out_trade_no,
        kind=ResultKind.SUCCESS,
        out_refund_no=payment.out_refund_no,
        refund_id="50300001",
    )
    gateway.notification = refund_notification(done)
    ack = await service.handle_gateway_notification({}, b"{}")
    assert ack.code == "SUCCESS"
    assert store.payments[out_trade_no].status == PaymentStatus.REFUNDED
    assert store.payments[out_trade_no].refund_id == "50300001"
    assert store.orders[order_no].status == OrderStatus.REFUNDED
    assert store.orders[order_no].refund_status == OrderRefundStatus.REFUNDED

    version = store.payments[out_trade_no].version
    await service.handle_gateway_notification({}, b"{}")
    assert store.payments[out_trade_no].version == version


@pytest.mark.asyncio
async def test_refund_settled_immediately(service, gateway, store):
    order_no, out_trade_no = await _paid_order(service, gateway)
    gateway.refund_response = RefundResult(out_trade_no=out_trade_no, kind=ResultKind.SUCCESS, refund_id="50300002")

    payment = await service.refund(out_trade_no, 1000)
    assert payment.status == "REFUNDED"
    assert payment.refund_fee == 1000
    assert store.orders[order_no].status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_refund_rejected_by_gateway_allows_retry(service, gateway, store):
    order_no, out_trade_no = await _paid_order(service, gateway)
    gateway.refund_error = PaymentProviderError("基本账户余额不足", provider="wechat", provider_code="NOT_ENOUGH", status=403)

    with pytest.raises(GatewayException):
        await service.refund(out_trade_no, 2700)
    assert store.payments[out_trade_no].status == PaymentStatus.PAID
    assert store.payments[out_trade_no].refund_status == PaymentRefundStatus.FAILED
    assert store.orders[order_no].status == OrderStatus.PAID
    assert store.orders[order_no].refund_status == OrderRefundStatus.FAILED

    gateway.refund_error = None
    payment = await service.refund(out_trade_no, 2700)
    assert payment.status == "REFUNDING"


@pytest.mark.asyncio
async def test_refund_timeout_stays_refunding(service, gateway, store):
    order_no, out_trade_no = await _paid_order(service, gateway)
    gateway.refund_error = GatewayException("refund timed out", provider="wechat", code=PaymentCode.TIMEOUT)

    with pytest.raises(GatewayException):
        await service.refund(out_trade_no, 2700)
    assert store.payments[out_trade_no].status == PaymentStatus.REFUNDING
    assert store.orders[order_no].refund_status == OrderRefundStatus.REFUNDING

    out_refund_no = store.payments[out_trade_no].out_refund_no
    gateway.refund_statuses[out_refund_no] = RefundResult(
        out_trade_no=out_trade_no, kind=ResultKind.SUCCESS, out_refund_no=out_refund_no, refund_id="50300003"
    )
    payment = await service.query_refund_and_sync(out_trade_no)
    assert payment.status == "REFUNDED"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        PaymentRecoverableError("read timed out", provider="wechat"),
        PaymentProviderError("系统错误", provider="wechat", provider_code="SYSTEM_ERROR", status=500),
        PaymentProviderError("频率超限", provider="wechat", provider_code="FREQUENCY_LIMITED", status=429),
    ],
)
async def test_ambiguous_refund_error_stays_refunding(service, gateway, store, error):
    order_no, out_trade_no = await _paid_order(service, gateway)
    gateway.refund_error = error

    with pytest.raises(GatewayException):
        await service.refund(out_trade_no, 2000)
    payment = store.payments[out_trade_no]
    assert payment.status == PaymentStatus.REFUNDING
    assert store.orders[order_no].refund_status == OrderRefundStatus.REFUNDING

    # a second refund cannot start while the first is unresolved
    gateway.refund_error = None
    with pytest.raises(InvalidTransitionException):
        await service.refund(out_trade_no, 2000)
    assert len(gateway.refund_calls) == 1

    gateway.notification = refund_notification(
        RefundResult(
            out_trade_no=out_trade_no,
            kind=ResultKind.SUCCESS,
            out_refund_no=payment.out_refund_no,
            refund_id="50300005",
        )
    )
    await service.handle_gateway_notification({}, b"{}")
    assert store.payments[out_trade_no].status == PaymentStatus.REFUNDED
    assert store.orders[order_no].status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_refund_success_after_rejection_is_applied(service, gateway, store):
    order_no, out_trade_no = await _paid_order(service, gateway)
    gateway.refund_error = PaymentProviderError("参数错误", provider="wechat", provider_code="INVALID_REQUEST", status=400)

    with pytest.raises(GatewayException):
        await service.refund(out_trade_no, 2700)
    payment = store.payments[out_trade_no]
    assert payment.status == PaymentStatus.PAID
    assert payment.refund_status == PaymentRefundStatus.FAILED

    gateway.notification = refund_notification(
        RefundResult(
            out_trade_no=out_trade_no,
            kind=ResultKind.SUCCESS,
            out_refund_no=payment.out_refund_no,
            refund_id="50300006",
        )
    )
    await service.handle_gateway_notification({}, b"{}")
    assert store.payments[out_trade_no].status == PaymentStatus.REFUNDED
    assert store.payments[out_trade_no].refund_id == "50300006"
    assert store.orders[order_no].status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_refund_guards(service, gateway, store):
    order, intent = await service.create_order_and_pay(_cmd())
    with pytest.raises(InvalidTransitionException):
        await service.refund(intent.out_trade_no, 100)

    gateway.notification = payment_notification(paid_result(intent.out_trade_no, 2700))
    await service.handle_gateway_notification({}, b"{}")
    with pytest.raises(DomainValidationException):
        await service.refund(intent.out_trade_no, 2701)
    assert gateway.refund_calls == []
    assert store.payments[intent.out_trade_no].status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_manual_refund_confirmation(service, gateway, store):
    order_no, out_trade_no = await _paid_order(service, gateway)
    await service.refund(out_trade_no, 2700)

    payment = await service.confirm_refund(out_trade_no, "50300004")
    assert payment.status == "REFUNDED"
    assert payment.refund_id == "50300004"
    assert store.orders[order_no].status == OrderStatus.REFUNDED


@pytest.mark.asyncio
async def test_sweep_stale_payments(service, gateway, store):
    _, paid = await service.create_order_and_pay(_cmd())
    _, waiting = await service.create_order_and_pay(_cmd())
    _, broken = await service.create_order_and_pay(_cmd())
    gateway.statuses[paid.out_trade_no] = paid_result(paid.out_trade_no, 2700)
    gateway.statuses[broken.out_trade_no] = paid_result(broken.out_trade_no, 1)

    report = await service.sweep_stale_payments(timedelta(seconds=-60))
    assert (report.scanned, report.applied, report.unchanged, report.errors) == (3, 1, 1, 1)
    assert store.payments[paid.out_trade_no].status == PaymentStatus.PAID
    assert store.payments[waiting.out_trade_no].status == PaymentStatus.PENDING

    # attempts younger than the threshold are left alone
    report = await service.sweep_stale_payments(timedelta(hours=1))
    assert report.scanned == 0


@pytest.mark.asyncio
async def test_sweep_rotates_through_abandoned_attempts(uow_factory, gateway, store):
    service = ReconciliationService(uow_factory, gateway, ReconciliationConfig(sweep_batch_size=2))
    intents = []
    for _ in range(3):
        _, intent = await service.create_order_and_pay(_cmd())
        intents.append(intent)
    base = datetime.now(timezone.utc) - timedelta(hours=1)
    for age, intent in enumerate(intents):
        store.payments[intent.out_trade_no].updated_at = base + timedelta(seconds=age)
    newest = intents[-1].out_trade_no
    gateway.statuses[newest] = paid_result(newest, 2700)

    first = await service.sweep_stale_payments(timedelta(seconds=-60))
    assert (first.scanned, first.applied, first.unchanged) == (2, 0, 2)
    assert store.payments[newest].status == PaymentStatus.PENDING

    second = await service.sweep_stale_payments(timedelta(seconds=-60))
    assert second.applied == 1
    assert store.payments[newest].status == PaymentStatus.PAID


@pytest.mark.asyncio
async def test_sweep_stuck_refunds(service, gateway, store):
    order_no, out_trade_no = await _paid_order(service, gateway)
    await service.refund(out_trade_no, 2700)
    out_refund_no = store.payments[out_trade_no].out_refund_no

    report = await service.sweep_stuck_refunds(timedelta(seconds=-60))
    assert (report.scanned, report.applied, report.unchanged) == (1, 0, 1)

    gateway.refund_statuses[out_refund_no] = RefundResult(
        out_trade_no=out_trade_no, kind=ResultKind.FAILURE, out_refund_no=out_refund_no, reason="ABNORMAL"
    )
    report = await service.sweep_stuck_refunds(timedelta(seconds=-60))
    assert report.applied == 1
    assert store.payments[out_trade_no].status == PaymentStatus.PAID
    assert store.orders[order_no].refund_status == OrderRefundStatus.FAILED


@pytest.mark.asyncio
async def test_stats_group_by_status(service, gateway, uow_factory):
    await _paid_order(service, gateway)
    await service.create_order_and_pay(_cmd())

    stats_service = OrderStatsService(uow_factory, default_platform_id="shop1")
    orders = await stats_service.get_order_stats()
    assert orders.total == 2
    assert orders.total_amount == 5400
    assert orders.total_amount_yuan == "54.00"
    assert orders.status_stats["PAID"].count == 1
    assert orders.status_stats["PENDING"].amount_yuan == "27.00"

    payments = await stats_service.get_payment_stats("shop1")
    assert payments.status_stats["PAID"].amount == 2700

    empty = await stats_service.get_order_stats("other")
    assert empty.total == 0 and empty.status_stats == {}
