from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from domain.common.exceptions import ConcurrentModificationException, OrderAlreadyExistsException
from domain.order.entity import LogisticsInfo, Order, OrderItem, OrderStatus, ShippingAddress
from domain.order.repository import OrderFilter
from domain.payment.entity import PaymentRecord, PaymentStatus
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


async def _session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    return engine, async_sessionmaker(bind=engine, expire_on_commit=False)


def _order(platform_id: str = "shop1") -> Order:
    items = [OrderItem(product_id="p1", product_name="Tea", unit_price=1000, quantity=2, attributes={"size": "L"})]
    address = ShippingAddress(receiver_name="Li", receiver_phone="13800000000", province="GD", city="SZ", district="NS", address="1 Rd")
    return Order.create(items, platform_id, openid="o-buyer", shipping_address=address, shipping_fee=200)


@pytest.mark.asyncio
async def test_order_round_trip_and_conditional_update():
    engine, factory = await _session_factory()
    try:
        order = _order()
        async with SQLAlchemyUnitOfWork(factory) as uow:
            created = await uow.order_repository.create(order)
            await uow.commit()
        assert created.id is not None
        assert created.version == 0

        async with SQLAlchemyUnitOfWork(factory, readonly=True) as uow:
            loaded = await uow.order_repository.get_by_order_no(order.order_no)
        assert loaded.items[0].attributes == {"size": "L"}
        assert loaded.shipping_address.city == "SZ"
        assert loaded.total_amount == 2200

        async with SQLAlchemyUnitOfWork(factory) as uow:
            current = await uow.order_repository.get_by_order_no(order.order_no)
            current.mark_as_paid(2200, "4200000001")
            await uow.order_repository.update(current, expected_status=OrderStatus.PENDING, expected_version=0)
            await uow.commit()
        assert current.version == 1

        # a writer holding the old version loses
        with pytest.raises(ConcurrentModificationException):
            async with SQLAlchemyUnitOfWork(factory) as uow:
                loaded.cancel()
                await uow.order_repository.update(loaded, expected_status=OrderStatus.PENDING, expected_version=0)

        async with SQLAlchemyUnitOfWork(factory) as uow:
            current = await uow.order_repository.get_by_order_no(order.order_no)
            current.ship(LogisticsInfo(company="SF", tracking_number="SF1"))
            await uow.order_repository.update(current, expected_status=OrderStatus.PAID, expected_version=1)

        async with SQLAlchemyUnitOfWork(factory, readonly=True) as uow:
            stored = await uow.order_repository.get_by_order_no(order.order_no)
        assert stored.status == OrderStatus.SHIPPED
        assert stored.logistics.tracking_number == "SF1"
        assert stored.payment_id == "4200000001"
        assert stored.version == 2
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_duplicate_order_no_rejected():
    engine, factory = await _session_factory()
    try:
        order = _order()
        async with SQLAlchemyUnitOfWork(factory) as uow:
            await uow.order_repository.create(order)

        clone = _order()
        clone.order_no = order.order_no
        with pytest.raises(OrderAlreadyExistsException):
            async with SQLAlchemyUnitOfWork(factory) as uow:
                await uow.order_repository.create(clone)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_listing_and_stats():
    engine, factory = await _session_factory()
    try:
        orders = [_order(), _order(), _order("shop2")]
        async with SQLAlchemyUnitOfWork(factory) as uow:
            for o in orders:
                await uow.order_repository.create(o)

        async with SQLAlchemyUnitOfWork(factory, readonly=True) as uow:
            page = await uow.order_repository.list(OrderFilter(platform_id="shop1"), skip=0, limit=1)
            total = await uow.order_repository.count(OrderFilter(platform_id="shop1"))
            by_no = await uow.order_repository.count(OrderFilter(keyword=orders[2].order_no[-6:]))
            stats = await uow.order_repository.stats_by_status("shop1")
        assert len(page) == 1
        assert total == 2
        assert by_no >= 1
        assert stats["PENDING"].count == 2
        assert stats["PENDING"].amount == 4400
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_payment_queries():
    engine, factory = await _session_factory()
    try:
        order = _order()
        payment = PaymentRecord.initiate(order, "o-buyer", out_trade_no="WXREPO0000001")
        async with SQLAlchemyUnitOfWork(factory) as uow:
            await uow.order_repository.create(order)
            await uow.payment_repository.create(payment)

        future = datetime.now(timezone.utc) + timedelta(minutes=1)
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        async with SQLAlchemyUnitOfWork(factory, readonly=True) as uow:
            assert [p.out_trade_no for p in await uow.payment_repository.list_stale_pending(future)] == ["WXREPO0000001"]
            assert await uow.payment_repository.list_stale_pending(past) == []
            listed = await uow.payment_repository.list_by_order_no(order.order_no)
        assert listed[0].status == PaymentStatus.PENDING
        assert listed[0].total_fee == 2200

        async with SQLAlchemyUnitOfWork(factory) as uow:
            current = await uow.payment_repository.get_by_out_trade_no("WXREPO0000001")
            current.cancel()
            await uow.payment_repository.update(current, expected_status=PaymentStatus.PENDING, expected_version=0)

        with pytest.raises(ConcurrentModificationException):
            async with SQLAlchemyUnitOfWork(factory) as uow:
                current = await uow.payment_repository.get_by_out_trade_no("WXREPO0000001")
                await uow.payment_repository.update(current, expected_status=PaymentStatus.PENDING, expected_version=1)
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_stale_pending_least_recently_polled_first():
    engine, factory = await _session_factory()
    try:
        old = datetime.now(timezone.utc) - timedelta(hours=2)
        numbers = ["WXREPO0000010", "WXREPO0000011"]
        async with SQLAlchemyUnitOfWork(factory) as uow:
            for n in numbers:
                order = _order()
                payment = PaymentRecord.initiate(order, "o-buyer", out_trade_no=n)
                payment.created_at = payment.updated_at = old
                await uow.order_repository.create(order)
                await uow.payment_repository.create(payment)

        async with SQLAlchemyUnitOfWork(factory) as uow:
            polled = await uow.payment_repository.get_by_out_trade_no(numbers[0])
            polled.mark_polled()
            await uow.payment_repository.update(polled, expected_status=PaymentStatus.PENDING, expected_version=0)

        cutoff = datetime.now(timezone.utc) - timedelta(hours=1)
        async with SQLAlchemyUnitOfWork(factory, readonly=True) as uow:
            batch = await uow.payment_repository.list_stale_pending(cutoff, limit=1)
            both = await uow.payment_repository.list_stale_pending(cutoff)
        assert [p.out_trade_no for p in batch] == [numbers[1]]
        assert [p.out_trade_no for p in both] == [numbers[1], numbers[0]]
    finally:
        await engine.dispose()
