"""
订单/支付统计应用服务 - 只读，不参与任何写路径
"""
from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from application.dtos.orders import StatsDTO, to_stats_dto
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork


logger = get_logger(__name__)


class OrderStatsService:
    """按状态分组统计订单与支付记录，结果允许略有滞后"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], default_platform_id: str = "root"):
        self._uow_factory = uow_factory
        self._default_platform_id = default_platform_id

    async def get_order_stats(
        self,
        platform_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> StatsDTO:
        platform_id = platform_id or self._default_platform_id
        async with self._uow_factory(readonly=True) as uow:
            buckets = await uow.order_repository.stats_by_status(platform_id, start_date, end_date)
        stats = to_stats_dto(buckets)
        logger.debug("order_stats_computed", platform_id=platform_id, total=stats.total)
        return stats

    async def get_payment_stats(
        self,
        platform_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> StatsDTO:
        platform_id = platform_id or self._default_platform_id
        async with self._uow_factory(readonly=True) as uow:
            buckets = await uow.payment_repository.stats_by_status(platform_id, start_date, end_date)
        stats = to_stats_dto(buckets)
        logger.debug("payment_stats_computed", platform_id=platform_id, total=stats.total)
        return stats
