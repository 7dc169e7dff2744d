from datetime import datetime, timezone

import pytest

from domain.common.exceptions import DomainValidationException, InvalidTransitionException
from domain.common.outcome import ApplyOutcome
from domain.order.entity import Order, OrderItem
from domain.payment.entity import (
    GatewayResult,
    PaymentRecord,
    PaymentRefundStatus,
    PaymentStatus,
    RefundResult,
    ResultKind,
    TradeType,
)
from domain.payment.events import PaymentFailed, PaymentInitiated, PaymentSucceeded


def _order() -> Order:
    items = [OrderItem(product_id="p1", product_name="Tea", unit_price=1000, quantity=2)]
    return Order.create(items, "shop1", openid="o-buyer", shipping_fee=200)


def _record(**kwargs) -> PaymentRecord:
    return PaymentRecord.initiate(_order(), "o-buyer", out_trade_no="WX0000000001abcd", **kwargs)


def _success(amount=2200, transaction_id="4200000001") -> GatewayResult:
    return GatewayResult(
        out_trade_no="WX0000000001abcd",
        kind=ResultKind.SUCCESS,
        transaction_id=transaction_id,
        total_fee=amount,
        cash_fee=amount,
        time_end=datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc),
    )


def _failure() -> GatewayResult:
    return GatewayResult(
        out_trade_no="WX0000000001abcd",
        kind=ResultKind.FAILURE,
        err_code="PAYERROR",
        err_code_des="bank declined",
    )


def test_initiate_snapshots_order_total():
    record = _record()
    assert record.status == PaymentStatus.PENDING
    assert record.total_fee == 2200
    assert record.order_no.startswith("SHOP1")
    assert [type(e) for e in record.pull_events()] == [PaymentInitiated]


def test_initiate_guards():
    order = _order()
    with pytest.raises(DomainValidationException):
        PaymentRecord.initiate(order, "o-buyer", amount=100)
    with pytest.raises(DomainValidationException):
        PaymentRecord.initiate(order, None, trade_type=TradeType.JSAPI)
    assert PaymentRecord.initiate(order, None, trade_type=TradeType.NATIVE).payer_openid is None

    order.cancel()
    with pytest.raises(InvalidTransitionException):
        PaymentRecord.initiate(order, "o-buyer")


def test_record_field_validation():
    with pytest.raises(DomainValidationException):
        PaymentRecord(id=None, out_trade_no="X" * 33, order_no="o", platform_id="p", total_fee=1)
    with pytest.raises(DomainValidationException):
        PaymentRecord(id=None, out_trade_no="WX1", order_no="o", platform_id="p", total_fee=0)


def test_success_applies_once():
    record = _record()
    record.pull_events()
    assert record.apply_gateway_result(_success()) == ApplyOutcome.APPLIED
    assert record.status == PaymentStatus.PAID
    assert record.transaction_id == "4200000001"
    assert record.cash_fee == 2200
    assert record.time_end == datetime(2024, 1, 2, 10, 0, tzinfo=timezone.utc)
    assert [type(e) for e in record.pull_events()] == [PaymentSucceeded]

    assert record.apply_gateway_result(_success()) == ApplyOutcome.ALREADY_PROCESSED
    assert record.pull_events() == []


def test_success_is_sticky():
    record = _record()
    record.apply_gateway_result(_success())
    assert record.apply_gateway_result(_failure()) == ApplyOutcome.IGNORED
    assert record.status == PaymentStatus.PAID


def test_failure_then_success_takes_gateway_word():
    record = _record()
    assert record.apply_gateway_result(_failure()) == ApplyOutcome.APPLIED
    assert record.status == PaymentStatus.FAILED
    assert record.err_code == "PAYERROR"
    assert any(isinstance(e, PaymentFailed) for e in record.pull_events())

    assert record.apply_gateway_result(_failure()) == ApplyOutcome.ALREADY_PROCESSED
    assert record.apply_gateway_result(_success()) == ApplyOutcome.APPLIED
    assert record.status == PaymentStatus.PAID
    assert record.err_code is None


def test_pending_result_is_ignored():
    record = _record()
    pending = GatewayResult(out_trade_no="WX0000000001abcd", kind=ResultKind.PENDING)
    assert record.apply_gateway_result(pending) == ApplyOutcome.IGNORED
    assert record.status == PaymentStatus.PENDING


def test_conflicting_results_rejected():
    record = _record()
    with pytest.raises(DomainValidationException):
        record.apply_gateway_result(_success(amount=1))
    assert record.status == PaymentStatus.PENDING

    record.apply_gateway_result(_success())
    with pytest.raises(InvalidTransitionException):
        record.apply_gateway_result(_success(transaction_id="4200000999"))

    other = GatewayResult(out_trade_no="WX9999", kind=ResultKind.SUCCESS)
    with pytest.raises(DomainValidationException):
        record.apply_gateway_result(other)


def test_success_on_cancelled_attempt_rejected():
    record = _record()
    record.cancel()
    assert record.status == PaymentStatus.CANCELLED
    with pytest.raises(InvalidTransitionException):
        record.apply_gateway_result(_success())
    with pytest.raises(InvalidTransitionException):
        record.cancel()


def test_refund_branch():
    record = _record()
    with pytest.raises(InvalidTransitionException):
        record.initiate_refund(100, None, "RF1")

    record.apply_gateway_result(_success())
    with pytest.raises(DomainValidationException):
        record.initiate_refund(2201, None, "RF1")

    record.initiate_refund(2200, "damaged", "RF1")
    assert record.status == PaymentStatus.REFUNDING
    assert record.refund_status == PaymentRefundStatus.PROCESSING

    stale = RefundResult(out_trade_no=record.out_trade_no, kind=ResultKind.SUCCESS, out_refund_no="RF0")
    assert record.apply_refund_result(stale) == ApplyOutcome.IGNORED

    done = RefundResult(out_trade_no=record.out_trade_no, kind=ResultKind.SUCCESS, out_refund_no="RF1", refund_id="50301")
    assert record.apply_refund_result(done) == ApplyOutcome.APPLIED
    assert record.status == PaymentStatus.REFUNDED
    assert record.refund_status == PaymentRefundStatus.SUCCESS
    assert record.refund_id == "50301"
    assert record.apply_refund_result(done) == ApplyOutcome.ALREADY_PROCESSED
    assert record.fail_refund("late failure") == ApplyOutcome.IGNORED


def test_refund_failure_returns_to_paid():
    record = _record()
    record.apply_gateway_result(_success())
    record.initiate_refund(1000, None, "RF1")
    failed = RefundResult(out_trade_no=record.out_trade_no, kind=ResultKind.FAILURE, out_refund_no="RF1", reason="ABNORMAL")
    assert record.apply_refund_result(failed) == ApplyOutcome.APPLIED
    assert record.status == PaymentStatus.PAID
    assert record.refund_status == PaymentRefundStatus.FAILED
    assert record.apply_refund_result(failed) == ApplyOutcome.ALREADY_PROCESSED

    record.initiate_refund(1000, None, "RF2")
    assert record.out_refund_no == "RF2"


def test_refund_success_after_failure_is_honoured():
    record = _record()
    record.apply_gateway_result(_success())
    record.initiate_refund(2200, None, "RF1")
    record.fail_refund("read timed out")
    assert record.status == PaymentStatus.PAID

    other = RefundResult(out_trade_no=record.out_trade_no, kind=ResultKind.SUCCESS, out_refund_no="RF0")
    assert record.apply_refund_result(other) == ApplyOutcome.IGNORED

    done = RefundResult(out_trade_no=record.out_trade_no, kind=ResultKind.SUCCESS, out_refund_no="RF1", refund_id="50302")
    assert record.apply_refund_result(done) == ApplyOutcome.APPLIED
    assert record.status == PaymentStatus.REFUNDED
    assert record.refund_status == PaymentRefundStatus.SUCCESS
    assert record.apply_refund_result(done) == ApplyOutcome.ALREADY_PROCESSED

    # without the refund number only an in-flight refund can be confirmed
    again = _record()
    again.apply_gateway_result(_success())
    again.initiate_refund(2200, None, "RF1")
    again.fail_refund()
    with pytest.raises(InvalidTransitionException):
        again.confirm_refund("50303")
