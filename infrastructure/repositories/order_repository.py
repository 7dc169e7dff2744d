"""
订单仓储实现 - 使用SQLAlchemy实现数据访问
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import ConcurrentModificationException, OrderAlreadyExistsException
from domain.order.entity import (
    LogisticsInfo,
    Order,
    OrderItem,
    OrderPaymentStatus,
    OrderRefundStatus,
    OrderStatus,
    OrderType,
    PaymentMethod,
    ShippingAddress,
)
from domain.order.repository import OrderFilter, OrderRepository, StatusBucket
from infrastructure.models.order import OrderModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyOrderRepository(OrderRepository):
    """订单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: OrderModel) -> Order:
        """将数据库模型转换为领域实体"""
        return Order(
            id=model.id,
            order_no=model.order_no,
            platform_id=model.platform_id,
            items=[OrderItem.from_dict(i) for i in model.items or []],
            status=OrderStatus(model.status),
            payment_status=OrderPaymentStatus(model.payment_status),
            order_type=OrderType(model.order_type),
            user_id=model.user_id,
            openid=model.openid,
            item_count=model.item_count,
            subtotal=model.subtotal,
            shipping_fee=model.shipping_fee,
            discount_amount=model.discount_amount,
            total_amount=model.total_amount,
            paid_amount=model.paid_amount,
            payment_method=PaymentMethod(model.payment_method) if model.payment_method else None,
            payment_id=model.payment_id,
            payment_time=model.payment_time,
            shipping_address=ShippingAddress.from_dict(model.shipping_address) if model.shipping_address else None,
            logistics=LogisticsInfo.from_dict(model.logistics) if model.logistics else None,
            shipping_time=model.shipping_time,
            delivery_time=model.delivery_time,
            completed_time=model.completed_time,
            buyer_message=model.buyer_message,
            seller_message=model.seller_message,
            refund_status=OrderRefundStatus(model.refund_status) if model.refund_status else None,
            refund_amount=model.refund_amount,
            refund_reason=model.refund_reason,
            refund_time=model.refund_time,
            source=model.source,
            metadata=dict(model.extra_metadata or {}),
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _to_values(entity: Order) -> Dict[str, Any]:
        """领域实体 -> 列值（不含主键与版本）"""
        return {
            "order_no": entity.order_no,
            "platform_id": entity.platform_id,
            "order_type": entity.order_type.value,
            "user_id": entity.user_id,
            "openid": entity.openid,
            "items": [i.to_dict() for i in entity.items],
            "item_count": entity.item_count,
            "subtotal": entity.subtotal,
            "shipping_fee": entity.shipping_fee,
            "discount_amount": entity.discount_amount,
            "total_amount": entity.total_amount,
            "paid_amount": entity.paid_amount,
            "status": entity.status.value,
            "payment_status": entity.payment_status.value,
            "payment_method": entity.payment_method.value if entity.payment_method else None,
            "payment_id": entity.payment_id,
            "payment_time": entity.payment_time,
            "shipping_address": entity.shipping_address.to_dict() if entity.shipping_address else None,
            "logistics": entity.logistics.to_dict() if entity.logistics else None,
            "shipping_time": entity.shipping_time,
            "delivery_time": entity.delivery_time,
            "completed_time": entity.completed_time,
            "buyer_message": entity.buyer_message,
            "seller_message": entity.seller_message,
            "refund_status": entity.refund_status.value if entity.refund_status else None,
            "refund_amount": entity.refund_amount,
            "refund_reason": entity.refund_reason,
            "refund_time": entity.refund_time,
            "source": entity.source,
            "extra_metadata": entity.metadata,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }

    async def create(self, order: Order) -> Order:
        """创建订单"""
        try:
            db_order = OrderModel(**self._to_values(order), version=0)
            self.session.add(db_order)
            await self.session.flush()
            await self.session.refresh(db_order)
            logger.info(
                "order_row_created",
                order_id=db_order.id,
                order_no=db_order.order_no,
                platform_id=db_order.platform_id,
            )
            created = self._to_entity(db_order)
            created.pending_events = order.pending_events
            return created
        except IntegrityError as e:
            await self.session.rollback()
            if "order_no" in str(e).lower():
                logger.warning("order_create_conflict", order_no=order.order_no)
                raise OrderAlreadyExistsException(order.order_no)
            raise

    async def get_by_order_no(self, order_no: str) -> Optional[Order]:
        """根据订单号获取订单"""
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.order_no == order_no)
        )
        db_order = result.scalar_one_or_none()
        return self._to_entity(db_order) if db_order else None

    async def update(self, order: Order, *, expected_status: OrderStatus, expected_version: int) -> Order:
        """条件更新：WHERE order_no = ? AND status = ? AND version = ?"""
        values = self._to_values(order)
        values["version"] = expected_version + 1
        result = await self.session.execute(
            update(OrderModel)
            .where(
                OrderModel.order_no == order.order_no,
                OrderModel.status == expected_status.value,
                OrderModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "order_update_conflict",
                order_no=order.order_no,
                expected_status=expected_status.value,
                expected_version=expected_version,
            )
            raise ConcurrentModificationException("order", order.order_no, expected_version)
        order.version = expected_version + 1
        return order

    def _apply_filters(self, query, filters: OrderFilter):
        if filters.platform_id:
            query = query.where(OrderModel.platform_id == filters.platform_id)
        if filters.status:
            query = query.where(OrderModel.status == filters.status.value)
        if filters.user_id:
            query = query.where(OrderModel.user_id == filters.user_id)
        if filters.openid:
            query = query.where(OrderModel.openid == filters.openid)
        if filters.keyword:
            query = query.where(OrderModel.order_no.contains(filters.keyword))
        if filters.start_date:
            query = query.where(OrderModel.created_at >= filters.start_date)
        if filters.end_date:
            query = query.where(OrderModel.created_at <= filters.end_date)
        return query

    async def list(self, filters: OrderFilter, skip: int = 0, limit: int = 20) -> List[Order]:
        """分页获取订单列表"""
        query = self._apply_filters(select(OrderModel), filters)
        query = query.order_by(OrderModel.created_at.desc(), OrderModel.id.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]

    async def count(self, filters: OrderFilter) -> int:
        """统计订单数量"""
        query = self._apply_filters(select(func.count(OrderModel.id)), filters)
        result = await self.session.execute(query)
        return result.scalar_one()

    async def stats_by_status(
        self,
        platform_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, StatusBucket]:
        """按状态分组统计"""
        query = select(
            OrderModel.status,
            func.count(OrderModel.id),
            func.coalesce(func.sum(OrderModel.total_amount), 0),
        ).where(OrderModel.platform_id == platform_id)
        if start_date:
            query = query.where(OrderModel.created_at >= start_date)
        if end_date:
            query = query.where(OrderModel.created_at <= end_date)
        query = query.group_by(OrderModel.status)

        result = await self.session.execute(query)
        return {
            status: StatusBucket(count=int(count), amount=int(amount))
            for status, count, amount in result.all()
        }
