"""create_orders_and_payment_records

Revision ID: 3b8f1c2d9a41
Revises:
Create Date: 2025-10-19 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b8f1c2d9a41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_no', sa.String(length=64), nullable=False, comment='订单号'),
        sa.Column('platform_id', sa.String(length=64), nullable=False, comment='租户ID'),
        sa.Column('order_type', sa.String(length=20), nullable=False, server_default='PRODUCT', comment='订单类型'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='注册用户ID'),
        sa.Column('openid', sa.String(length=128), nullable=True, comment='渠道身份 openid'),
        sa.Column('items', sa.JSON(), nullable=False, comment='商品行'),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='0', comment='商品件数'),
        sa.Column('subtotal', sa.BigInteger(), nullable=False, server_default='0', comment='商品小计'),
        sa.Column('shipping_fee', sa.BigInteger(), nullable=False, server_default='0', comment='运费'),
        sa.Column('discount_amount', sa.BigInteger(), nullable=False, server_default='0', comment='优惠金额'),
        sa.Column('total_amount', sa.BigInteger(), nullable=False, server_default='0', comment='应付金额'),
        sa.Column('paid_amount', sa.BigInteger(), nullable=False, server_default='0', comment='实付金额'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='订单状态'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='UNPAID', comment='支付状态'),
        sa.Column('payment_method', sa.String(length=20), nullable=True, comment='支付方式'),
        sa.Column('payment_id', sa.String(length=64), nullable=True, comment='网关交易号'),
        sa.Column('payment_time', sa.DateTime(timezone=True), nullable=True, comment='支付时间'),
        sa.Column('shipping_address', sa.JSON(), nullable=True, comment='收货地址'),
        sa.Column('logistics', sa.JSON(), nullable=True, comment='物流信息'),
        sa.Column('shipping_time', sa.DateTime(timezone=True), nullable=True, comment='发货时间'),
        sa.Column('delivery_time', sa.DateTime(timezone=True), nullable=True, comment='收货时间'),
        sa.Column('completed_time', sa.DateTime(timezone=True), nullable=True, comment='完成时间'),
        sa.Column('buyer_message', sa.String(length=500), nullable=True, comment='买家留言'),
        sa.Column('seller_message', sa.String(length=500), nullable=True, comment='卖家备注'),
        sa.Column('refund_status', sa.String(length=20), nullable=True, comment='退款状态'),
        sa.Column('refund_amount', sa.BigInteger(), nullable=True, comment='退款金额'),
        sa.Column('refund_reason', sa.Text(), nullable=True, comment='退款原因'),
        sa.Column('refund_time', sa.DateTime(timezone=True), nullable=True, comment='退款时间'),
        sa.Column('source', sa.String(length=32), nullable=False, server_default='miniprogram', comment='下单来源'),
        sa.Column('metadata', sa.JSON(), nullable=True, comment='扩展元数据'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='版本号'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        comment='订单表',
    )
    op.create_index('ix_orders_id', 'orders', ['id'], unique=False)
    op.create_index('ix_orders_order_no', 'orders', ['order_no'], unique=True)
    op.create_index('ix_orders_platform_id', 'orders', ['platform_id'], unique=False)
    op.create_index('ix_orders_user_id', 'orders', ['user_id'], unique=False)
    op.create_index('ix_orders_openid', 'orders', ['openid'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)
    op.create_index('ix_orders_payment_id', 'orders', ['payment_id'], unique=False)
    op.create_index('ix_orders_created_at', 'orders', ['created_at'], unique=False)
    op.create_index('ix_orders_platform_status', 'orders', ['platform_id', 'status'], unique=False)
    op.create_index('ix_orders_platform_created', 'orders', ['platform_id', 'created_at'], unique=False)

    op.create_table(
        'payment_records',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('out_trade_no', sa.String(length=32), nullable=False, comment='商户订单号'),
        sa.Column('order_no', sa.String(length=64), nullable=False, comment='订单号'),
        sa.Column('platform_id', sa.String(length=64), nullable=False, comment='租户ID'),
        sa.Column('provider', sa.String(length=50), nullable=False, server_default='wechat', comment='支付提供商'),
        sa.Column('trade_type', sa.String(length=16), nullable=False, server_default='JSAPI', comment='交易类型'),
        sa.Column('payer_openid', sa.String(length=128), nullable=True, comment='付款人 openid'),
        sa.Column('description', sa.String(length=128), nullable=True, comment='商品描述'),
        sa.Column('notify_url', sa.String(length=500), nullable=True, comment='异步通知URL'),
        sa.Column('prepay_id', sa.String(length=64), nullable=True, comment='预支付会话标识'),
        sa.Column('code_url', sa.String(length=500), nullable=True, comment='二维码链接'),
        sa.Column('total_fee', sa.BigInteger(), nullable=False, comment='订单金额'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='CNY', comment='货币代码'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='支付状态'),
        sa.Column('transaction_id', sa.String(length=64), nullable=True, comment='网关交易号'),
        sa.Column('time_end', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.Column('cash_fee', sa.BigInteger(), nullable=True, comment='实收金额'),
        sa.Column('fee_type', sa.String(length=8), nullable=True, comment='实收币种'),
        sa.Column('err_code', sa.String(length=64), nullable=True, comment='错误码'),
        sa.Column('err_code_des', sa.String(length=256), nullable=True, comment='错误描述'),
        sa.Column('out_refund_no', sa.String(length=64), nullable=True, comment='商户退款单号'),
        sa.Column('refund_fee', sa.BigInteger(), nullable=True, comment='退款金额'),
        sa.Column('refund_reason', sa.String(length=256), nullable=True, comment='退款原因'),
        sa.Column('refund_status', sa.String(length=20), nullable=True, comment='退款状态'),
        sa.Column('refund_id', sa.String(length=64), nullable=True, comment='网关退款单号'),
        sa.Column('refund_success_time', sa.DateTime(timezone=True), nullable=True, comment='退款成功时间'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='版本号'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_records'),
        comment='支付记录表，一次支付尝试一行',
    )
    op.create_index('ix_payment_records_id', 'payment_records', ['id'], unique=False)
    op.create_index('ix_payment_records_out_trade_no', 'payment_records', ['out_trade_no'], unique=True)
    op.create_index('ix_payment_records_order_no', 'payment_records', ['order_no'], unique=False)
    op.create_index('ix_payment_records_platform_id', 'payment_records', ['platform_id'], unique=False)
    op.create_index('ix_payment_records_status', 'payment_records', ['status'], unique=False)
    op.create_index('ix_payment_records_transaction_id', 'payment_records', ['transaction_id'], unique=False)
    op.create_index('ix_payment_records_out_refund_no', 'payment_records', ['out_refund_no'], unique=False)
    op.create_index('ix_payment_records_created_at', 'payment_records', ['created_at'], unique=False)
    op.create_index('ix_payment_records_status_created', 'payment_records', ['status', 'created_at'], unique=False)
    op.create_index('ix_payment_records_status_updated', 'payment_records', ['status', 'updated_at'], unique=False)
    op.create_index('ix_payment_records_platform_status', 'payment_records', ['platform_id', 'status'], unique=False)


def downgrade() -> None:
    op.drop_table('payment_records')
    op.drop_table('orders')
