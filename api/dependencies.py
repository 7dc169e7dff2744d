"""
API依赖项 - 应用服务装配
"""
from functools import lru_cache

from fastapi import Depends

from application.ports.payment_gateway import PaymentGateway
from application.services.order_stats_service import OrderStatsService
from application.services.reconciliation_service import ReconciliationConfig, ReconciliationService
from core.config import settings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@lru_cache(maxsize=1)
def get_gateway() -> PaymentGateway:
    """网关客户端持有商户证书，进程内复用一个实例"""
    return get_payment_gateway()


async def get_reconciliation_service(
    gateway: PaymentGateway = Depends(get_gateway),
) -> ReconciliationService:
    return ReconciliationService(
        uow_factory=SQLAlchemyUnitOfWork,
        gateway=gateway,
        config=ReconciliationConfig.from_settings(settings.reconciliation),
    )


async def get_stats_service() -> OrderStatsService:
    return OrderStatsService(
        uow_factory=SQLAlchemyUnitOfWork,
        default_platform_id=settings.reconciliation.default_platform_id,
    )
