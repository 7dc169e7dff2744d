"""
统计API路由
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_stats_service
from application.dtos.orders import StatsDTO
from application.services.order_stats_service import OrderStatsService
from core.response import Response as ApiResponse, success_response


router = APIRouter(prefix="/admin/stats", tags=["统计"])


@router.get("/orders", summary="订单状态统计", response_model=ApiResponse[StatsDTO])
async def order_stats(
    platform_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    service: OrderStatsService = Depends(get_stats_service),
):
    return success_response(data=await service.get_order_stats(platform_id, start_date, end_date))


@router.get("/payments", summary="支付状态统计", response_model=ApiResponse[StatsDTO])
async def payment_stats(
    platform_id: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    service: OrderStatsService = Depends(get_stats_service),
):
    return success_response(data=await service.get_payment_stats(platform_id, start_date, end_date))
