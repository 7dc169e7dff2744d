import pytest

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.common.outcome import ApplyOutcome
from domain.order.entity import (
    LogisticsInfo,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderRefundStatus,
    OrderStatus,
)
from domain.order.events import OrderCreated, OrderPaid, OrderRefunded


def _items():
    return [
        OrderItem(product_id="p1", product_name="Tea", unit_price=1000, quantity=2),
        OrderItem(product_id="p2", product_name="Cup", unit_price=500, quantity=1),
    ]


def _order(**kwargs) -> Order:
    kwargs.setdefault("openid", "o-buyer")
    kwargs.setdefault("shipping_fee", 200)
    return Order.create(_items(), "shop1", **kwargs)


def _paid_order() -> Order:
    order = _order()
    order.mark_as_paid(order.total_amount, "4200000001")
    return order


def test_create_computes_amounts():
    order = _order()
    assert order.status == OrderStatus.PENDING
    assert order.payment_status == OrderPaymentStatus.UNPAID
    assert order.item_count == 3
    assert order.subtotal == 2500
    assert order.total_amount == 2700
    assert order.order_no.startswith("SHOP1")
    events = order.pull_events()
    assert [type(e) for e in events] == [OrderCreated]
    assert events[0].amount == 2700
    assert order.pull_events() == []


def test_item_total_is_derived():
    item = OrderItem(product_id="p1", product_name="Tea", unit_price=333, quantity=3, total_price=1)
    assert item.total_price == 999


@pytest.mark.parametrize(
    "kwargs",
    [
        {"user_id": "u1", "openid": "o1"},
        {"user_id": None, "openid": None},
    ],
)
def test_exactly_one_buyer_identity(kwargs):
    with pytest.raises(DomainValidationException):
        Order.create(_items(), "shop1", **kwargs)


def test_invalid_inputs_rejected():
    with pytest.raises(DomainValidationException):
        Order.create([], "shop1", openid="o1")
    with pytest.raises(DomainValidationException):
        OrderItem(product_id="p1", product_name="Tea", unit_price=100, quantity=0)
    with pytest.raises(DomainValidationException):
        OrderItem(product_id="p1", product_name="Tea", unit_price=9.9, quantity=1)
    with pytest.raises(DomainValidationException):
        _order(discount_amount=5000)
    with pytest.raises(DomainValidationException):
        _order(buyer_message="x" * 501)


def test_mark_as_paid_is_idempotent():
    order = _order()
    assert order.mark_as_paid(2700, "4200000001") == ApplyOutcome.APPLIED
    assert order.status == OrderStatus.PAID
    assert order.payment_status == OrderPaymentStatus.PAID
    assert order.paid_amount == 2700
    assert order.payment_id == "4200000001"
    assert order.payment_time is not None
    assert any(isinstance(e, OrderPaid) for e in order.pull_events())

    assert order.mark_as_paid(2700, "4200000001") == ApplyOutcome.ALREADY_PROCESSED
    assert order.pull_events() == []


def test_cancelled_order_cannot_be_paid():
    order = _order()
    order.cancel("changed my mind")
    assert order.seller_message == "changed my mind"
    with pytest.raises(InvalidTransitionException):
        order.mark_as_paid(2700, "4200000001")


def test_fulfilment_path():
    order = _paid_order()
    order.ship(LogisticsInfo(company="SF", tracking_number="SF123"))
    assert order.status == OrderStatus.SHIPPED
    assert order.logistics.last_update is not None
    order.confirm_delivery()
    assert order.status == OrderStatus.DELIVERED
    order.complete()
    assert order.status == OrderStatus.COMPLETED
    with pytest.raises(InvalidTransitionException):
        order.cancel()


def test_illegal_transitions_leave_order_unchanged():
    order = _order()
    with pytest.raises(InvalidTransitionException):
        order.ship(LogisticsInfo(company="SF", tracking_number="SF123"))
    with pytest.raises(InvalidTransitionException):
        order.confirm_delivery()
    assert order.status == OrderStatus.PENDING

    paid = _paid_order()
    with pytest.raises(InvalidTransitionException):
        paid.cancel()
    assert paid.status == OrderStatus.PAID


def test_refund_lifecycle():
    order = _paid_order()
    with pytest.raises(DomainValidationException):
        order.request_refund(2701)
    with pytest.raises(DomainValidationException):
        order.request_refund(0)

    order.request_refund(2700, "damaged")
    assert order.status == OrderStatus.PAID
    assert order.refund_status == OrderRefundStatus.REFUNDING
    assert order.effective_status == "REFUNDING"

    # no fulfilment while a refund is open
    with pytest.raises(InvalidTransitionException):
        order.ship(LogisticsInfo(company="SF", tracking_number="SF123"))
    with pytest.raises(InvalidTransitionException):
        order.request_refund(100)

    order.pull_events()
    assert order.confirm_refund() == ApplyOutcome.APPLIED
    assert order.status == OrderStatus.REFUNDED
    assert order.refund_status == OrderRefundStatus.REFUNDED
    assert order.refund_time is not None
    assert [type(e) for e in order.pull_events()] == [OrderRefunded]
    assert order.confirm_refund() == ApplyOutcome.ALREADY_PROCESSED


def test_failed_refund_allows_retry():
    order = _paid_order()
    order.request_refund(1000)
    order.fail_refund()
    assert order.status == OrderStatus.PAID
    assert order.refund_status == OrderRefundStatus.FAILED
    order.request_refund(1000)
    assert order.refund_in_progress


def test_refund_confirmed_after_failure():
    order = _paid_order()
    order.request_refund(1000)
    order.fail_refund()
    order.pull_events()
    assert order.confirm_refund() == ApplyOutcome.APPLIED
    assert order.status == OrderStatus.REFUNDED
    assert order.refund_status == OrderRefundStatus.REFUNDED
    assert [type(e) for e in order.pull_events()] == [OrderRefunded]


def test_delivered_order_is_not_refundable():
    order = _paid_order()
    order.ship(LogisticsInfo(company="SF", tracking_number="SF123"))
    order.request_refund(100)
    order.fail_refund()
    order.confirm_delivery()
    with pytest.raises(InvalidTransitionException):
        order.request_refund(100)
