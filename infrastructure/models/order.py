"""
订单数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Text, JSON, Index
)
from datetime import datetime, timezone

from .base import Base


class OrderModel(Base):
    """
    订单数据库模型

    商品行、收货地址、物流信息以 JSON 文档嵌入
    所有业务规则都在 domain.order.entity.Order 中
    """
    __tablename__ = "orders"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    order_no = Column(String(64), unique=True, index=True, nullable=False, comment="订单号")
    platform_id = Column(String(64), nullable=False, index=True, comment="租户ID")
    order_type = Column(String(20), nullable=False, default="PRODUCT", comment="订单类型")

    # 归属
    user_id = Column(String(64), nullable=True, index=True, comment="注册用户ID")
    openid = Column(String(128), nullable=True, index=True, comment="渠道身份 openid")

    # 商品
    items = Column(JSON, nullable=False, comment="商品行")
    item_count = Column(Integer, nullable=False, default=0, comment="商品件数")

    # 金额（分）
    subtotal = Column(BigInteger, nullable=False, default=0, comment="商品小计")
    shipping_fee = Column(BigInteger, nullable=False, default=0, comment="运费")
    discount_amount = Column(BigInteger, nullable=False, default=0, comment="优惠金额")
    total_amount = Column(BigInteger, nullable=False, default=0, comment="应付金额")
    paid_amount = Column(BigInteger, nullable=False, default=0, comment="实付金额")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="订单状态: PENDING/PAID/SHIPPED/DELIVERED/CANCELLED/REFUNDED/COMPLETED"
    )
    payment_status = Column(String(20), nullable=False, default="UNPAID", comment="支付状态")

    # 支付
    payment_method = Column(String(20), nullable=True, comment="支付方式")
    payment_id = Column(String(64), nullable=True, index=True, comment="网关交易号")
    payment_time = Column(DateTime(timezone=True), nullable=True, comment="支付时间")

    # 收货与物流
    shipping_address = Column(JSON, nullable=True, comment="收货地址")
    logistics = Column(JSON, nullable=True, comment="物流信息")
    shipping_time = Column(DateTime(timezone=True), nullable=True, comment="发货时间")
    delivery_time = Column(DateTime(timezone=True), nullable=True, comment="收货时间")
    completed_time = Column(DateTime(timezone=True), nullable=True, comment="完成时间")

    # 备注
    buyer_message = Column(String(500), nullable=True, comment="买家留言")
    seller_message = Column(String(500), nullable=True, comment="卖家备注")

    # 退款
    refund_status = Column(String(20), nullable=True, comment="退款状态: REFUNDING/REFUNDED/FAILED")
    refund_amount = Column(BigInteger, nullable=True, comment="退款金额")
    refund_reason = Column(Text, nullable=True, comment="退款原因")
    refund_time = Column(DateTime(timezone=True), nullable=True, comment="退款时间")

    source = Column(String(32), nullable=False, default="miniprogram", comment="下单来源")
    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    # 乐观锁
    version = Column(Integer, nullable=False, default=0, comment="版本号")

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    __table_args__ = (
        Index("ix_orders_platform_status", "platform_id", "status"),
        Index("ix_orders_platform_created", "platform_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<OrderModel(id={self.id}, order_no='{self.order_no}', "
            f"total_amount={self.total_amount}, status='{self.status}')>"
        )
