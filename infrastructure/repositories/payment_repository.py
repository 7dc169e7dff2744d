"""
支付记录仓储实现 - 使用SQLAlchemy实现数据访问
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import ConcurrentModificationException, PaymentAlreadyExistsException
from domain.order.repository import StatusBucket
from domain.payment.entity import PaymentRecord, PaymentRefundStatus, PaymentStatus, TradeType
from domain.payment.repository import PaymentRepository
from infrastructure.models.payment import PaymentRecordModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付记录仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentRecordModel) -> PaymentRecord:
        """将数据库模型转换为领域实体"""
        return PaymentRecord(
            id=model.id,
            out_trade_no=model.out_trade_no,
            order_no=model.order_no,
            platform_id=model.platform_id,
            total_fee=model.total_fee,
            status=PaymentStatus(model.status),
            provider=model.provider,
            currency=model.currency,
            description=model.description,
            payer_openid=model.payer_openid,
            trade_type=TradeType(model.trade_type),
            notify_url=model.notify_url,
            prepay_id=model.prepay_id,
            code_url=model.code_url,
            transaction_id=model.transaction_id,
            time_end=model.time_end,
            cash_fee=model.cash_fee,
            fee_type=model.fee_type,
            err_code=model.err_code,
            err_code_des=model.err_code_des,
            out_refund_no=model.out_refund_no,
            refund_fee=model.refund_fee,
            refund_reason=model.refund_reason,
            refund_status=PaymentRefundStatus(model.refund_status) if model.refund_status else None,
            refund_id=model.refund_id,
            refund_success_time=model.refund_success_time,
            version=model.version,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _to_values(entity: PaymentRecord) -> Dict[str, Any]:
        """领域实体 -> 列值（不含主键与版本）"""
        return {
            "out_trade_no": entity.out_trade_no,
            "order_no": entity.order_no,
            "platform_id": entity.platform_id,
            "provider": entity.provider,
            "trade_type": entity.trade_type.value,
            "payer_openid": entity.payer_openid,
            "description": entity.description,
            "notify_url": entity.notify_url,
            "prepay_id": entity.prepay_id,
            "code_url": entity.code_url,
            "total_fee": entity.total_fee,
            "currency": entity.currency,
            "status": entity.status.value,
            "transaction_id": entity.transaction_id,
            "time_end": entity.time_end,
            "cash_fee": entity.cash_fee,
            "fee_type": entity.fee_type,
            "err_code": entity.err_code,
            "err_code_des": entity.err_code_des,
            "out_refund_no": entity.out_refund_no,
            "refund_fee": entity.refund_fee,
            "refund_reason": entity.refund_reason,
            "refund_status": entity.refund_status.value if entity.refund_status else None,
            "refund_id": entity.refund_id,
            "refund_success_time": entity.refund_success_time,
            "created_at": entity.created_at,
            "updated_at": entity.updated_at,
        }

    async def create(self, payment: PaymentRecord) -> PaymentRecord:
        """创建支付记录"""
        try:
            db_payment = PaymentRecordModel(**self._to_values(payment), version=0)
            self.session.add(db_payment)
            await self.session.flush()
            await self.session.refresh(db_payment)
            logger.info(
                "payment_record_created",
                payment_id=db_payment.id,
                out_trade_no=db_payment.out_trade_no,
                order_no=db_payment.order_no,
            )
            created = self._to_entity(db_payment)
            created.pending_events = payment.pending_events
            return created
        except IntegrityError as e:
            await self.session.rollback()
            if "out_trade_no" in str(e).lower():
                logger.warning("payment_create_conflict", out_trade_no=payment.out_trade_no)
                raise PaymentAlreadyExistsException(payment.out_trade_no)
            raise

    async def get_by_out_trade_no(self, out_trade_no: str) -> Optional[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel).where(PaymentRecordModel.out_trade_no == out_trade_no)
        )
        db_payment = result.scalar_one_or_none()
        return self._to_entity(db_payment) if db_payment else None

    async def get_by_out_refund_no(self, out_refund_no: str) -> Optional[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel).where(PaymentRecordModel.out_refund_no == out_refund_no)
        )
        db_payment = result.scalars().first()
        return self._to_entity(db_payment) if db_payment else None

    async def list_by_order_no(self, order_no: str) -> List[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel)
            .where(PaymentRecordModel.order_no == order_no)
            .order_by(PaymentRecordModel.created_at.desc(), PaymentRecordModel.id.desc())
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def update(
        self,
        payment: PaymentRecord,
        *,
        expected_status: PaymentStatus,
        expected_version: int,
    ) -> PaymentRecord:
        """条件更新：WHERE out_trade_no = ? AND status = ? AND version = ?"""
        values = self._to_values(payment)
        values["version"] = expected_version + 1
        result = await self.session.execute(
            update(PaymentRecordModel)
            .where(
                PaymentRecordModel.out_trade_no == payment.out_trade_no,
                PaymentRecordModel.status == expected_status.value,
                PaymentRecordModel.version == expected_version,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "payment_update_conflict",
                out_trade_no=payment.out_trade_no,
                expected_status=expected_status.value,
                expected_version=expected_version,
            )
            raise ConcurrentModificationException("payment", payment.out_trade_no, expected_version)
        payment.version = expected_version + 1
        return payment

    async def list_stale_pending(self, older_than: datetime, limit: int = 100) -> List[PaymentRecord]:
        """最久未被查询的在前；每次查询后 updated_at 前移，批次在积压记录间轮转"""
        result = await self.session.execute(
            select(PaymentRecordModel)
            .where(
                PaymentRecordModel.status == PaymentStatus.PENDING.value,
                PaymentRecordModel.created_at < older_than,
            )
            .order_by(PaymentRecordModel.updated_at.asc(), PaymentRecordModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_stuck_refunding(self, older_than: datetime, limit: int = 100) -> List[PaymentRecord]:
        result = await self.session.execute(
            select(PaymentRecordModel)
            .where(
                PaymentRecordModel.status == PaymentStatus.REFUNDING.value,
                PaymentRecordModel.updated_at < older_than,
            )
            .order_by(PaymentRecordModel.updated_at.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def stats_by_status(
        self,
        platform_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, StatusBucket]:
        query = select(
            PaymentRecordModel.status,
            func.count(PaymentRecordModel.id),
            func.coalesce(func.sum(PaymentRecordModel.total_fee), 0),
        ).where(PaymentRecordModel.platform_id == platform_id)
        if start_date:
            query = query.where(PaymentRecordModel.created_at >= start_date)
        if end_date:
            query = query.where(PaymentRecordModel.created_at <= end_date)
        query = query.group_by(PaymentRecordModel.status)

        result = await self.session.execute(query)
        return {
            status: StatusBucket(count=int(count), amount=int(amount))
            for status, count, amount in result.all()
        }
