"""
支付仓储接口 - 定义支付记录数据访问的抽象接口
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from domain.order.repository import StatusBucket
from .entity import PaymentRecord, PaymentStatus


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: PaymentRecord) -> PaymentRecord:
        """创建支付记录，out_trade_no 冲突时抛出 PaymentAlreadyExistsException"""
        pass

    @abstractmethod
    async def get_by_out_trade_no(self, out_trade_no: str) -> Optional[PaymentRecord]:
        """根据商户订单号获取支付记录"""
        pass

    @abstractmethod
    async def get_by_out_refund_no(self, out_refund_no: str) -> Optional[PaymentRecord]:
        """根据商户退款单号获取支付记录"""
        pass

    @abstractmethod
    async def list_by_order_no(self, order_no: str) -> List[PaymentRecord]:
        """获取订单下的全部支付尝试，按创建时间倒序"""
        pass

    @abstractmethod
    async def update(
        self,
        payment: PaymentRecord,
        *,
        expected_status: PaymentStatus,
        expected_version: int,
    ) -> PaymentRecord:
        """条件更新，状态或版本不符时抛出 ConcurrentModificationException"""
        pass

    @abstractmethod
    async def list_stale_pending(self, older_than: datetime, limit: int = 100) -> List[PaymentRecord]:
        """查询创建时间早于阈值仍为 PENDING 的记录，按最近一次更新时间升序"""
        pass

    @abstractmethod
    async def list_stuck_refunding(self, older_than: datetime, limit: int = 100) -> List[PaymentRecord]:
        """查询更新时间早于阈值仍为 REFUNDING 的记录"""
        pass

    @abstractmethod
    async def stats_by_status(
        self,
        platform_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, StatusBucket]:
        """按状态分组统计支付笔数与金额"""
        pass
