"""
订单API路由 - FastAPI表现层

只做参数解析与响应包装，状态流转全部交给 ReconciliationService。
"""
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import get_reconciliation_service
from application.dtos.orders import (
    CancelIn,
    CreateOrderIn,
    LogisticsIn,
    OrderCreatedDTO,
    OrderDTO,
    PaymentAttemptIn,
    RemarkIn,
)
from application.dtos.payments import PaymentDTO, PaymentIntentDTO
from application.services.reconciliation_service import ReconciliationService
from core.config import settings
from core.response import PaginatedData, Response as ApiResponse, paginated_response, success_response
from domain.order.entity import OrderStatus
from domain.order.repository import OrderFilter


router = APIRouter(prefix="/orders", tags=["订单管理"])
admin_router = APIRouter(prefix="/admin/orders", tags=["订单后台"])


@router.post(
    "",
    summary="创建订单并发起支付",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiResponse[OrderCreatedDTO],
)
async def create_order(
    cmd: CreateOrderIn,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """
    创建订单并向支付网关下预支付单

    - **items**: 商品明细，金额单位为分
    - **shipping_fee** / **discount_amount**: 运费与优惠（分）
    - **trade_type**: JSAPI 需要 openid，NATIVE 返回二维码链接
    """
    order, intent = await service.create_order_and_pay(cmd)
    return success_response(data=OrderCreatedDTO(order=order, payment=intent), message="订单创建成功")


@router.get("", summary="订单列表", response_model=ApiResponse[PaginatedData[OrderDTO]])
async def list_orders(
    platform_id: Optional[str] = Query(None),
    order_status: Optional[OrderStatus] = Query(None, alias="status"),
    user_id: Optional[str] = Query(None),
    openid: Optional[str] = Query(None),
    keyword: Optional[str] = Query(None, description="按订单号模糊匹配"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    filters = OrderFilter(
        platform_id=platform_id or service.config.default_platform_id,
        status=order_status,
        user_id=user_id,
        openid=openid,
        keyword=keyword,
        start_date=start_date,
        end_date=end_date,
    )
    items, total = await service.list_orders(filters, page=page, size=size)
    return paginated_response(items=items, total=total, page=page, size=size)


@router.get("/{order_no}", summary="订单详情", response_model=ApiResponse[OrderDTO])
async def get_order(
    order_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return success_response(data=await service.get_order(order_no))


@router.post("/{order_no}/payment", summary="重新发起支付", response_model=ApiResponse[PaymentIntentDTO])
async def initiate_payment(
    order_no: str,
    cmd: Optional[PaymentAttemptIn] = None,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    """关闭之前未完成的支付尝试后，为待支付订单生成新的预支付单"""
    intent = await service.initiate_payment(order_no, cmd)
    return success_response(data=intent, message="支付已发起")


@router.get("/{order_no}/payment-status", summary="查询支付结果", response_model=ApiResponse[PaymentDTO])
async def payment_status(
    order_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return success_response(data=await service.query_order_payment(order_no))


@router.get("/{order_no}/payments", summary="支付尝试列表", response_model=ApiResponse[List[PaymentDTO]])
async def list_order_payments(
    order_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    return success_response(data=await service.list_payments_for_order(order_no))


@router.post("/{order_no}/cancel", summary="取消订单", response_model=ApiResponse[OrderDTO])
async def cancel_order(
    order_no: str,
    cmd: Optional[CancelIn] = None,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    order = await service.cancel_order(order_no, cmd)
    return success_response(data=order, message="订单已取消")


@router.post("/{order_no}/confirm-delivery", summary="确认收货", response_model=ApiResponse[OrderDTO])
async def confirm_delivery(
    order_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    order = await service.confirm_delivery(order_no)
    return success_response(data=order, message="已确认收货")


@admin_router.post("/{order_no}/ship", summary="订单发货", response_model=ApiResponse[OrderDTO])
async def ship_order(
    order_no: str,
    logistics: LogisticsIn,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    order = await service.ship(order_no, logistics)
    return success_response(data=order, message="发货成功")


@admin_router.post("/{order_no}/complete", summary="完成订单", response_model=ApiResponse[OrderDTO])
async def complete_order(
    order_no: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    order = await service.complete_order(order_no)
    return success_response(data=order, message="订单已完成")


@admin_router.put("/{order_no}/remark", summary="更新卖家备注", response_model=ApiResponse[OrderDTO])
async def update_remark(
    order_no: str,
    cmd: RemarkIn,
    service: ReconciliationService = Depends(get_reconciliation_service),
):
    order = await service.update_remark(order_no, cmd.seller_message)
    return success_response(data=order, message="备注已更新")
