"""
订单仓储接口 - 定义订单数据访问的抽象接口
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from .entity import Order, OrderStatus


@dataclass
class OrderFilter:
    """订单列表筛选条件"""
    platform_id: Optional[str] = None
    status: Optional[OrderStatus] = None
    user_id: Optional[str] = None
    openid: Optional[str] = None
    keyword: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


@dataclass
class StatusBucket:
    count: int
    amount: int


class OrderRepository(ABC):
    """订单仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, order: Order) -> Order:
        """创建订单，订单号冲突时抛出 OrderAlreadyExistsException"""
        pass

    @abstractmethod
    async def get_by_order_no(self, order_no: str) -> Optional[Order]:
        """根据订单号获取订单"""
        pass

    @abstractmethod
    async def update(self, order: Order, *, expected_status: OrderStatus, expected_version: int) -> Order:
        """
        条件更新订单

        仅当库中状态与版本仍等于读取时的值才写入，否则抛出
        ConcurrentModificationException；成功后 version + 1
        """
        pass

    @abstractmethod
    async def list(self, filters: OrderFilter, skip: int = 0, limit: int = 20) -> List[Order]:
        """分页获取订单列表，按创建时间倒序"""
        pass

    @abstractmethod
    async def count(self, filters: OrderFilter) -> int:
        """统计订单数量"""
        pass

    @abstractmethod
    async def stats_by_status(
        self,
        platform_id: str,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Dict[str, StatusBucket]:
        """按状态分组统计订单数量与金额"""
        pass
