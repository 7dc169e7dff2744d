from datetime import datetime, timedelta, timezone

import pytest

from application.services.reconciliation_service import ReconciliationConfig, ReconciliationService
from domain.order.entity import Order, OrderItem, OrderStatus
from domain.payment.entity import PaymentRecord, PaymentStatus, RefundResult, ResultKind
from infrastructure.tasks import celery_app
from infrastructure.tasks.tasks import payments as payment_tasks
from support import paid_result


def _seed(store, age: timedelta) -> PaymentRecord:
    order = Order.create([OrderItem(product_id="p1", product_name="Tea", unit_price=900, quantity=1)], "shop1", openid="o1")
    payment = PaymentRecord.initiate(order, "o1")
    old = datetime.now(timezone.utc) - age
    order.created_at = order.updated_at = old
    payment.created_at = payment.updated_at = old
    order.pull_events()
    payment.pull_events()
    store.orders[order.order_no] = order
    store.payments[payment.out_trade_no] = payment
    return payment


@pytest.fixture
def task_service(monkeypatch, uow_factory, gateway):
    service = ReconciliationService(uow_factory, gateway, ReconciliationConfig())
    monkeypatch.setattr(payment_tasks, "build_service", lambda: service)
    return service


def test_tasks_are_registered_and_routed():
    assert "payments.sweep_stale" in celery_app.tasks
    assert "payments.sweep_refunds" in celery_app.tasks
    assert celery_app.conf.task_routes["payments.*"] == {"queue": "reconciliation"}
    schedule = celery_app.conf.beat_schedule
    assert {entry["task"] for entry in schedule.values()} >= {"payments.sweep_stale", "payments.sweep_refunds"}


def test_sweep_stale_task_reports(task_service, gateway, store):
    paid = _seed(store, timedelta(days=1))
    _seed(store, timedelta(days=1))
    _seed(store, timedelta(seconds=1))
    gateway.statuses[paid.out_trade_no] = paid_result(paid.out_trade_no, 900)

    report = payment_tasks.sweep_stale_payments.run()
    assert report == {"scanned": 2, "applied": 1, "unchanged": 1, "errors": 0}
    assert store.payments[paid.out_trade_no].status == PaymentStatus.PAID
    assert store.orders[paid.order_no].status == OrderStatus.PAID


def test_sweep_refunds_task_reports(task_service, gateway, store):
    payment = _seed(store, timedelta(days=1))
    gateway.statuses[payment.out_trade_no] = paid_result(payment.out_trade_no, 900)
    payment_tasks.query_payment_status.run(payment.out_trade_no)

    stored = store.payments[payment.out_trade_no]
    stored.initiate_refund(900, None, "RF0000000001")
    stored.updated_at = datetime.now(timezone.utc) - timedelta(days=1)
    stored.pull_events()
    order = store.orders[payment.order_no]
    order.request_refund(900)
    order.pull_events()
    gateway.refund_statuses["RF0000000001"] = RefundResult(
        out_trade_no=payment.out_trade_no, kind=ResultKind.SUCCESS, out_refund_no="RF0000000001", refund_id="503"
    )

    report = payment_tasks.sweep_stuck_refunds.run()
    assert report["scanned"] == 1 and report["applied"] == 1
    assert store.payments[payment.out_trade_no].status == PaymentStatus.REFUNDED
    assert store.orders[payment.order_no].status == OrderStatus.REFUNDED


def test_query_task_returns_status(task_service, gateway, store):
    payment = _seed(store, timedelta(minutes=5))
    result = payment_tasks.query_payment_status.run(payment.out_trade_no)
    assert result == {"out_trade_no": payment.out_trade_no, "status": "PENDING"}
