"""
支付记录数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Index
)
from datetime import datetime, timezone

from .base import Base


class PaymentRecordModel(Base):
    """
    支付记录数据库模型

    一次支付尝试一行，out_trade_no 唯一
    所有业务规则都在 domain.payment.entity.PaymentRecord 中
    """
    __tablename__ = "payment_records"

    # 主键
    id = Column(Integer, primary_key=True, index=True)

    out_trade_no = Column(String(32), unique=True, index=True, nullable=False, comment="商户订单号")
    order_no = Column(String(64), nullable=False, index=True, comment="订单号")
    platform_id = Column(String(64), nullable=False, index=True, comment="租户ID")

    # 支付渠道信息
    provider = Column(String(50), nullable=False, default="wechat", comment="支付提供商")
    trade_type = Column(String(16), nullable=False, default="JSAPI", comment="交易类型: JSAPI/NATIVE/APP/H5")
    payer_openid = Column(String(128), nullable=True, comment="付款人 openid")
    description = Column(String(128), nullable=True, comment="商品描述")
    notify_url = Column(String(500), nullable=True, comment="异步通知URL")
    prepay_id = Column(String(64), nullable=True, comment="预支付会话标识")
    code_url = Column(String(500), nullable=True, comment="二维码链接")

    # 金额（分）
    total_fee = Column(BigInteger, nullable=False, comment="订单金额")
    currency = Column(String(3), nullable=False, default="CNY", comment="货币代码 ISO-4217")

    # 状态
    status = Column(
        String(20),
        nullable=False,
        default="PENDING",
        index=True,
        comment="支付状态: PENDING/PAID/FAILED/REFUNDING/REFUNDED/CANCELLED"
    )

    # 成功回执
    transaction_id = Column(String(64), nullable=True, index=True, comment="网关交易号")
    time_end = Column(DateTime(timezone=True), nullable=True, comment="支付完成时间")
    cash_fee = Column(BigInteger, nullable=True, comment="实收金额")
    fee_type = Column(String(8), nullable=True, comment="实收币种")

    # 失败回执
    err_code = Column(String(64), nullable=True, comment="错误码")
    err_code_des = Column(String(256), nullable=True, comment="错误描述")

    # 退款
    out_refund_no = Column(String(64), nullable=True, index=True, comment="商户退款单号")
    refund_fee = Column(BigInteger, nullable=True, comment="退款金额")
    refund_reason = Column(String(256), nullable=True, comment="退款原因")
    refund_status = Column(String(20), nullable=True, comment="退款状态: PROCESSING/SUCCESS/FAILED")
    refund_id = Column(String(64), nullable=True, comment="网关退款单号")
    refund_success_time = Column(DateTime(timezone=True), nullable=True, comment="退款成功时间")

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
        Index("ix_payment_records_status_created", "status", "created_at"),
        Index("ix_payment_records_status_updated", "status", "updated_at"),
        Index("ix_payment_records_platform_status", "platform_id", "status"),
    )

    def __repr__(self):
        return (
            f"<PaymentRecordModel(id={self.id}, out_trade_no='{self.out_trade_no}', "
            f"total_fee={self.total_fee}, status='{self.status}')>"
        )
