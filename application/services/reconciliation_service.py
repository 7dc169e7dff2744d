"""
订单与支付对账应用服务（application/services）

编排订单聚合、支付记录聚合与支付网关：
- 下单并预支付、重新发起支付、取消、发货、确认收货、退款
- 处理网关异步通知与主动查询，幂等地合并结果
- 定时扫描长时间未决的支付与退款

每个变更都在事务内重新加载聚合，并以读取时的状态与版本做条件更新；
条件不满足时抛出 ConcurrentModificationException，由本服务有限次重试。
"""
from __future__ import annotations

import re
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Mapping, Optional, Tuple

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random_exponential

from application.dtos.orders import (
    CancelIn,
    CreateOrderIn,
    LogisticsIn,
    OrderDTO,
    PaymentAttemptIn,
    to_order_dto,
)
from application.dtos.payments import (
    PaymentDTO,
    PaymentIntentDTO,
    PrepayHandle,
    PrepayRequest,
    RefundCall,
    WebhookAck,
    to_intent_dto,
    to_payment_dto,
)
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import (
    AuthenticityException,
    BusinessException,
    ConcurrentModificationException,
    GatewayException,
    InvalidTransitionException,
    OrderAlreadyExistsException,
    OrderNotFoundException,
    PaymentNotFoundException,
)
from domain.common.outcome import ApplyOutcome
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import (
    LogisticsInfo,
    LogisticsTrack,
    Order,
    OrderItem,
    OrderStatus,
    ShippingAddress,
)
from domain.order.numbering import generate_out_refund_no
from domain.order.repository import OrderFilter
from domain.payment.entity import (
    GatewayResult,
    PaymentRecord,
    PaymentStatus,
    RefundResult,
    ResultKind,
)


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass(frozen=True)
class ReconciliationConfig:
    """服务运行参数，由组合根从配置中读取后显式传入"""

    default_platform_id: str = "root"
    notify_url: Optional[str] = None
    description_prefix: str = "订单"
    max_conflict_retries: int = 3
    order_no_attempts: int = 3
    sweep_batch_size: int = 100

    @classmethod
    def from_settings(cls, cfg: Any) -> "ReconciliationConfig":
        return cls(
            default_platform_id=cfg.default_platform_id,
            notify_url=cfg.notify_url,
            description_prefix=cfg.description_prefix,
            max_conflict_retries=cfg.max_conflict_retries,
            order_no_attempts=cfg.order_no_attempts,
            sweep_batch_size=cfg.sweep_batch_size,
        )


@dataclass
class SweepReport:
    scanned: int = 0
    applied: int = 0
    unchanged: int = 0
    errors: int = 0


def _event_name(event: Any) -> str:
    return _CAMEL.sub("_", type(event).__name__).lower()


class ReconciliationService:
    """订单生命周期与支付对账服务"""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        gateway: PaymentGateway,
        config: ReconciliationConfig,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self.config = config
        self.events: List = []  # 领域事件收集

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _retrying(self, fn: Callable[..., Any], *args, **kwargs):
        """乐观锁冲突时重新加载并重试，超过次数后抛出冲突异常"""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.config.max_conflict_retries + 1),
            wait=wait_random_exponential(multiplier=0.01, max=0.2),
            retry=retry_if_exception_type(ConcurrentModificationException),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "optimistic_conflict_retry",
                        operation=getattr(fn, "__name__", "operation"),
                        attempt=attempt.retry_state.attempt_number,
                    )
                return await fn(*args, **kwargs)

    def _publish(self, *aggregates) -> None:
        for aggregate in aggregates:
            if aggregate is None:
                continue
            for event in aggregate.pull_events():
                self.events.append(event)
                logger.info(_event_name(event), **{k: v for k, v in asdict(event).items() if k != "occurred_at"})

    def get_domain_events(self) -> List:
        """取出并清空已发布的领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events

    @staticmethod
    async def _load_order(uow: AbstractUnitOfWork, order_no: str) -> Order:
        order = await uow.order_repository.get_by_order_no(order_no)
        if order is None:
            raise OrderNotFoundException(order_no)
        return order

    @staticmethod
    async def _load_payment(uow: AbstractUnitOfWork, out_trade_no: str) -> PaymentRecord:
        payment = await uow.payment_repository.get_by_out_trade_no(out_trade_no)
        if payment is None:
            raise PaymentNotFoundException(out_trade_no)
        return payment

    def _description(self, order: Order) -> str:
        first = order.items[0].product_name if order.items else ""
        text = f"{self.config.description_prefix}{order.order_no}"
        if first:
            text = f"{first} - {text}"
        # 网关限制 127 字节
        return text.encode("utf-8")[:127].decode("utf-8", errors="ignore")

    # ------------------------------------------------------------------
    # 下单与支付
    # ------------------------------------------------------------------
    async def create_order_and_pay(self, cmd: CreateOrderIn) -> Tuple[OrderDTO, PaymentIntentDTO]:
        """
        创建订单并发起预支付

        订单与支付记录在同一事务中落库并提交后才调用网关；
        网关失败时支付记录保持 PENDING，异常继续抛出。
        """
        platform_id = cmd.platform_id or self.config.default_platform_id
        items = [OrderItem(**i.model_dump()) for i in cmd.items]
        address = ShippingAddress(**cmd.shipping_address.model_dump()) if cmd.shipping_address else None
        payer_openid = cmd.payer_openid or cmd.openid

        attempts = max(1, self.config.order_no_attempts)
        for attempt in range(1, attempts + 1):
            order = Order.create(
                items,
                platform_id,
                user_id=cmd.user_id,
                openid=cmd.openid,
                shipping_address=address,
                shipping_fee=cmd.shipping_fee,
                discount_amount=cmd.discount_amount,
                order_type=cmd.order_type,
                buyer_message=cmd.buyer_message,
            )
            payment = PaymentRecord.initiate(
                order,
                payer_openid,
                description=cmd.description or self._description(order),
                trade_type=cmd.trade_type,
                notify_url=self.config.notify_url,
                provider=self.gateway.provider,
            )
            try:
                async with self._uow_factory() as uow:
                    order = await uow.order_repository.create(order)
                    payment = await uow.payment_repository.create(payment)
                    await uow.commit()
                break
            except OrderAlreadyExistsException:
                logger.warning("order_no_collision", order_no=order.order_no, attempt=attempt)
                if attempt >= attempts:
                    raise

        self._publish(order, payment)

        handle = await self._prepay(payment)
        payment = await self._attach_prepay(payment, handle)
        return to_order_dto(order), to_intent_dto(payment, handle)

    async def initiate_payment(self, order_no: str, cmd: Optional[PaymentAttemptIn] = None) -> PaymentIntentDTO:
        """为待支付订单发起新的支付尝试，先关闭并作废之前未决的尝试"""
        cmd = cmd or PaymentAttemptIn()
        order = await self._close_pending_attempts(order_no, action="pay")

        payment = PaymentRecord.initiate(
            order,
            cmd.payer_openid or order.openid,
            description=self._description(order),
            trade_type=cmd.trade_type,
            notify_url=self.config.notify_url,
            provider=self.gateway.provider,
        )

        async def _persist() -> PaymentRecord:
            async with self._uow_factory() as uow:
                current = await self._load_order(uow, order_no)
                if current.status != OrderStatus.PENDING:
                    raise InvalidTransitionException("order", current.effective_status, "pay")
                # 订单版本前移，与并发的取消互斥
                await uow.order_repository.update(
                    current, expected_status=OrderStatus.PENDING, expected_version=current.version
                )
                created = await uow.payment_repository.create(payment)
                await uow.commit()
            return created

        payment = await self._retrying(_persist)
        self._publish(payment)

        handle = await self._prepay(payment)
        payment = await self._attach_prepay(payment, handle)
        return to_intent_dto(payment, handle)

    async def _prepay(self, payment: PaymentRecord) -> PrepayHandle:
        req = PrepayRequest(
            out_trade_no=payment.out_trade_no,
            description=payment.description or payment.order_no,
            total_fee=payment.total_fee,
            currency=payment.currency,
            trade_type=payment.trade_type,
            payer_openid=payment.payer_openid,
            notify_url=payment.notify_url,
            attach=payment.platform_id,
        )
        try:
            handle = await self.gateway.create_prepay(req)
        except GatewayException as exc:
            logger.error(
                "payment_prepay_failed",
                out_trade_no=payment.out_trade_no,
                order_no=payment.order_no,
                provider=self.gateway.provider,
                error=exc.message,
            )
            raise
        logger.info(
            "payment_prepay_created",
            out_trade_no=payment.out_trade_no,
            order_no=payment.order_no,
            prepay_id=handle.prepay_id,
        )
        return handle

    async def _attach_prepay(self, payment: PaymentRecord, handle: PrepayHandle) -> PaymentRecord:
        async def _once() -> PaymentRecord:
            async with self._uow_factory() as uow:
                current = await self._load_payment(uow, payment.out_trade_no)
                if current.status != PaymentStatus.PENDING:
                    return current
                status, version = current.status, current.version
                current.attach_prepay(handle.prepay_id, handle.code_url)
                await uow.payment_repository.update(current, expected_status=status, expected_version=version)
                await uow.commit()
                return current

        try:
            return await self._retrying(_once)
        except ConcurrentModificationException:
            # 预支付标识只用于展示，丢失不影响对账
            logger.warning("payment_prepay_attach_skipped", out_trade_no=payment.out_trade_no)
            payment.attach_prepay(handle.prepay_id, handle.code_url)
            return payment

    async def _close_pending_attempts(self, order_no: str, *, action: str) -> Order:
        """
        关闭订单下所有 PENDING 的支付尝试

        关闭前先向网关确认该尝试未支付成功，已成功的结果会先合并，
        订单随即不再是 PENDING，调用方得到 InvalidTransitionException。
        """
        async with self._uow_factory(readonly=True) as uow:
            order = await self._load_order(uow, order_no)
            attempts = await uow.payment_repository.list_by_order_no(order_no)
        if order.status != OrderStatus.PENDING or order.refund_in_progress:
            raise InvalidTransitionException("order", order.effective_status, action)

        pending = [p for p in attempts if p.status == PaymentStatus.PENDING]
        for attempt in pending:
            result = await self.gateway.query_status(attempt.out_trade_no)
            if result.kind != ResultKind.PENDING:
                await self._apply_payment_result(result)
                if result.kind == ResultKind.SUCCESS:
                    raise InvalidTransitionException("order", OrderStatus.PAID.value, action)
                continue
            await self.gateway.close(attempt.out_trade_no)
            await self._retrying(self._cancel_attempt, attempt.out_trade_no)
            logger.info("payment_attempt_closed", out_trade_no=attempt.out_trade_no, order_no=order_no)
        return order

    async def _cancel_attempt(self, out_trade_no: str) -> None:
        async with self._uow_factory() as uow:
            payment = await self._load_payment(uow, out_trade_no)
            if payment.status != PaymentStatus.PENDING:
                return
            status, version = payment.status, payment.version
            payment.cancel()
            await uow.payment_repository.update(payment, expected_status=status, expected_version=version)
            await uow.commit()
        self._publish(payment)

    # ------------------------------------------------------------------
    # 网关结果
    # ------------------------------------------------------------------
    async def handle_gateway_notification(self, headers: Mapping[str, Any], body: bytes) -> WebhookAck:
        """
        处理网关异步通知

        验签失败只记录不处理；无论内部结果如何都返回网关要求的应答，
        漏掉的结果由主动查询与定时扫描补齐。
        """
        try:
            note = await self.gateway.verify_notification(headers, body)
        except AuthenticityException as exc:
            logger.warning("payment_notification_rejected", provider=self.gateway.provider, reason=exc.message)
            return WebhookAck()

        try:
            if note.kind == "refund" and note.refund is not None:
                outcome = await self._apply_refund_result(note.refund)
                key = note.refund.out_trade_no
            elif note.payment is not None:
                outcome = await self._apply_payment_result(note.payment)
                key = note.payment.out_trade_no
            else:
                logger.warning("payment_notification_empty", notification_id=note.id, event_type=note.event_type)
                return WebhookAck()
        except PaymentNotFoundException as exc:
            logger.warning("payment_notification_unknown_trade", notification_id=note.id, identifier=exc.details)
            return WebhookAck()
        except BusinessException as exc:
            logger.error(
                "payment_notification_failed",
                notification_id=note.id,
                kind=note.kind,
                error_type=exc.error_type,
                error=exc.message,
            )
            return WebhookAck()

        if outcome == ApplyOutcome.ALREADY_PROCESSED:
            logger.info("payment_notification_duplicate", notification_id=note.id, out_trade_no=key)
        else:
            logger.info(
                "payment_notification_processed",
                notification_id=note.id,
                kind=note.kind,
                out_trade_no=key,
                outcome=outcome.value,
            )
        return WebhookAck()

    async def _apply_payment_result(self, result: GatewayResult) -> ApplyOutcome:
        return await self._retrying(self._apply_payment_result_once, result)

    async def _apply_payment_result_once(self, result: GatewayResult) -> ApplyOutcome:
        order: Optional[Order] = None
        async with self._uow_factory() as uow:
            payment = await self._load_payment(uow, result.out_trade_no)
            p_status, p_version = payment.status, payment.version

            try:
                outcome = payment.apply_gateway_result(result)
            except InvalidTransitionException:
                if result.kind == ResultKind.SUCCESS:
                    # 已作废的尝试被支付成功，需人工退款
                    logger.error(
                        "payment_orphaned",
                        order_no=payment.order_no,
                        out_trade_no=payment.out_trade_no,
                        payment_status=payment.status.value,
                        transaction_id=result.transaction_id,
                        amount=result.total_fee,
                    )
                raise
            if outcome != ApplyOutcome.APPLIED:
                return outcome

            await uow.payment_repository.update(payment, expected_status=p_status, expected_version=p_version)

            if payment.status == PaymentStatus.PAID:
                order = await self._load_order(uow, payment.order_no)
                o_status, o_version = order.status, order.version
                try:
                    order_outcome = order.mark_as_paid(payment.cash_fee or payment.total_fee, payment.transaction_id)
                except InvalidTransitionException:
                    self._log_orphan(order, payment)
                    raise
                if order_outcome == ApplyOutcome.APPLIED:
                    await uow.order_repository.update(order, expected_status=o_status, expected_version=o_version)
                elif order.payment_id != payment.transaction_id:
                    # 订单已被另一笔尝试支付，本笔需人工退款
                    self._log_orphan(order, payment)
                    raise InvalidTransitionException("order", order.effective_status, "pay")

            await uow.commit()

        self._publish(payment, order)
        return outcome

    @staticmethod
    def _log_orphan(order: Order, payment: PaymentRecord) -> None:
        logger.error(
            "payment_orphaned",
            order_no=order.order_no,
            order_status=order.effective_status,
            order_payment_id=order.payment_id,
            out_trade_no=payment.out_trade_no,
            transaction_id=payment.transaction_id,
            amount=payment.total_fee,
        )

    async def _apply_refund_result(self, result: RefundResult) -> ApplyOutcome:
        return await self._retrying(self._apply_refund_result_once, result)

    async def _apply_refund_result_once(self, result: RefundResult) -> ApplyOutcome:
        async with self._uow_factory() as uow:
            payment = await uow.payment_repository.get_by_out_trade_no(result.out_trade_no)
            if payment is None and result.out_refund_no:
                payment = await uow.payment_repository.get_by_out_refund_no(result.out_refund_no)
            if payment is None:
                raise PaymentNotFoundException(result.out_refund_no or result.out_trade_no)
            p_status, p_version = payment.status, payment.version

            outcome = payment.apply_refund_result(result)
            if outcome != ApplyOutcome.APPLIED:
                return outcome
            await uow.payment_repository.update(payment, expected_status=p_status, expected_version=p_version)

            order = await self._load_order(uow, payment.order_no)
            o_status, o_version = order.status, order.version
            if payment.status == PaymentStatus.REFUNDED:
                changed = order.confirm_refund() == ApplyOutcome.APPLIED
            elif order.refund_in_progress:
                order.fail_refund()
                changed = True
            else:
                changed = False
            if changed:
                await uow.order_repository.update(order, expected_status=o_status, expected_version=o_version)
            await uow.commit()

        self._publish(payment, order)
        return outcome

    async def query_and_sync(self, out_trade_no: str) -> PaymentDTO:
        """主动向网关查询支付状态并合并"""
        await self.get_payment(out_trade_no)
        result = await self.gateway.query_status(out_trade_no)
        outcome = await self._apply_payment_result(result)
        logger.info("payment_status_synced", out_trade_no=out_trade_no, kind=result.kind.value, outcome=outcome.value)
        return await self.get_payment(out_trade_no)

    async def query_order_payment(self, order_no: str) -> PaymentDTO:
        """查询订单最近一次支付尝试；仍未决时先向网关同步"""
        payments = await self.list_payments_for_order(order_no)
        if not payments:
            raise PaymentNotFoundException(order_no)
        latest = payments[0]
        if latest.status == PaymentStatus.PENDING.value:
            return await self.query_and_sync(latest.out_trade_no)
        return latest

    # ------------------------------------------------------------------
    # 履约
    # ------------------------------------------------------------------
    async def _mutate_order(self, order_no: str, mutate: Callable[[Order], None]) -> OrderDTO:
        async def _once() -> Order:
            async with self._uow_factory() as uow:
                order = await self._load_order(uow, order_no)
                status, version = order.status, order.version
                mutate(order)
                await uow.order_repository.update(order, expected_status=status, expected_version=version)
                await uow.commit()
            self._publish(order)
            return order

        return to_order_dto(await self._retrying(_once))

    async def ship(self, order_no: str, logistics: LogisticsIn) -> OrderDTO:
        def _ship(order: Order) -> None:
            now = datetime.now(timezone.utc)
            order.ship(
                LogisticsInfo(
                    company=logistics.company,
                    tracking_number=logistics.tracking_number,
                    status="SHIPPED",
                    last_update=now,
                    tracks=[LogisticsTrack(time=now, status="SHIPPED", description=logistics.description or "商品已发货")],
                )
            )

        return await self._mutate_order(order_no, _ship)

    async def confirm_delivery(self, order_no: str) -> OrderDTO:
        return await self._mutate_order(order_no, lambda order: order.confirm_delivery())

    async def complete_order(self, order_no: str) -> OrderDTO:
        return await self._mutate_order(order_no, lambda order: order.complete())

    async def update_remark(self, order_no: str, text: Optional[str]) -> OrderDTO:
        return await self._mutate_order(order_no, lambda order: order.update_seller_message(text))

    async def cancel_order(self, order_no: str, cmd: Optional[CancelIn] = None) -> OrderDTO:
        """
        取消待支付订单

        先在网关关闭未决的支付尝试（网关失败则不取消），
        再在同一事务内取消订单并作废这些尝试。
        """
        reason = cmd.reason if cmd else None
        await self._close_pending_attempts(order_no, action="cancel")

        async def _once() -> Tuple[Order, List[PaymentRecord]]:
            async with self._uow_factory() as uow:
                order = await self._load_order(uow, order_no)
                status, version = order.status, order.version
                order.cancel(reason)
                await uow.order_repository.update(order, expected_status=status, expected_version=version)

                cancelled = []
                for payment in await uow.payment_repository.list_by_order_no(order_no):
                    if payment.status != PaymentStatus.PENDING:
                        continue
                    p_status, p_version = payment.status, payment.version
                    payment.cancel()
                    await uow.payment_repository.update(payment, expected_status=p_status, expected_version=p_version)
                    cancelled.append(payment)
                await uow.commit()
            return order, cancelled

        order, cancelled = await self._retrying(_once)
        self._publish(order, *cancelled)
        return to_order_dto(order)

    # ------------------------------------------------------------------
    # 退款
    # ------------------------------------------------------------------
    async def refund(self, out_trade_no: str, amount: int, reason: Optional[str] = None) -> PaymentDTO:
        """
        发起退款

        先把订单与支付记录一起置为退款中并提交，再调用网关；
        网关立即返回成功时当场确认。
        """
        out_refund_no = generate_out_refund_no()

        async def _persist() -> Tuple[Order, PaymentRecord]:
            async with self._uow_factory() as uow:
                payment = await self._load_payment(uow, out_trade_no)
                order = await self._load_order(uow, payment.order_no)
                p_status, p_version = payment.status, payment.version
                o_status, o_version = order.status, order.version

                order.request_refund(amount, reason)
                payment.initiate_refund(amount, reason, out_refund_no)

                await uow.payment_repository.update(payment, expected_status=p_status, expected_version=p_version)
                await uow.order_repository.update(order, expected_status=o_status, expected_version=o_version)
                await uow.commit()
            return order, payment

        order, payment = await self._retrying(_persist)
        self._publish(order, payment)

        call = RefundCall(
            out_trade_no=payment.out_trade_no,
            out_refund_no=out_refund_no,
            refund_fee=amount,
            total_fee=payment.total_fee,
            currency=payment.currency,
            reason=reason,
            transaction_id=payment.transaction_id,
            notify_url=self.config.notify_url,
        )
        try:
            handle = await self.gateway.refund(call)
        except GatewayException as exc:
            logger.error(
                "refund_request_failed",
                out_trade_no=out_trade_no,
                out_refund_no=out_refund_no,
                error=exc.message,
                rejected=exc.rejected,
            )
            if exc.rejected:
                # 网关明确拒绝：退回 PAID 允许再次申请；其余情况保持退款中，由查询或扫描确认
                await self._apply_refund_result(
                    RefundResult(
                        out_trade_no=out_trade_no,
                        kind=ResultKind.FAILURE,
                        out_refund_no=out_refund_no,
                        reason=exc.message,
                    )
                )
            raise

        logger.info(
            "refund_requested",
            out_trade_no=out_trade_no,
            out_refund_no=out_refund_no,
            amount=amount,
            kind=handle.kind.value,
        )
        if handle.kind != ResultKind.PENDING:
            await self._apply_refund_result(handle)
        return await self.get_payment(out_trade_no)

    async def confirm_refund(self, out_trade_no: str, gateway_refund_id: Optional[str]) -> PaymentDTO:
        await self._apply_refund_result(
            RefundResult(out_trade_no=out_trade_no, kind=ResultKind.SUCCESS, refund_id=gateway_refund_id)
        )
        return await self.get_payment(out_trade_no)

    async def query_refund_and_sync(self, out_trade_no: str) -> PaymentDTO:
        payment = await self.get_payment(out_trade_no)
        if payment.status != PaymentStatus.REFUNDING.value or not payment.out_refund_no:
            return payment
        handle = await self.gateway.query_refund(payment.out_refund_no, out_trade_no)
        outcome = await self._apply_refund_result(handle)
        logger.info("refund_status_synced", out_trade_no=out_trade_no, kind=handle.kind.value, outcome=outcome.value)
        return await self.get_payment(out_trade_no)

    # ------------------------------------------------------------------
    # 定时扫描（由 Celery beat 调度）
    # ------------------------------------------------------------------
    async def sweep_stale_payments(self, older_than: timedelta) -> SweepReport:
        cutoff = datetime.now(timezone.utc) - older_than
        async with self._uow_factory(readonly=True) as uow:
            stale = await uow.payment_repository.list_stale_pending(cutoff, self.config.sweep_batch_size)

        report = SweepReport(scanned=len(stale))
        for payment in stale:
            try:
                result = await self.gateway.query_status(payment.out_trade_no)
                outcome = await self._apply_payment_result(result)
                if result.kind == ResultKind.PENDING:
                    await self._retrying(self._mark_polled, payment.out_trade_no)
            except BusinessException as exc:
                report.errors += 1
                logger.warning(
                    "sweep_payment_failed",
                    out_trade_no=payment.out_trade_no,
                    error_type=exc.error_type,
                    error=exc.message,
                )
                continue
            if outcome == ApplyOutcome.APPLIED:
                report.applied += 1
            else:
                report.unchanged += 1
        logger.info("sweep_stale_payments_done", **asdict(report))
        return report

    async def _mark_polled(self, out_trade_no: str) -> None:
        async with self._uow_factory() as uow:
            payment = await self._load_payment(uow, out_trade_no)
            if payment.status != PaymentStatus.PENDING:
                return
            status, version = payment.status, payment.version
            payment.mark_polled()
            await uow.payment_repository.update(payment, expected_status=status, expected_version=version)
            await uow.commit()

    async def sweep_stuck_refunds(self, older_than: timedelta) -> SweepReport:
        cutoff = datetime.now(timezone.utc) - older_than
        async with self._uow_factory(readonly=True) as uow:
            stuck = await uow.payment_repository.list_stuck_refunding(cutoff, self.config.sweep_batch_size)

        report = SweepReport(scanned=len(stuck))
        for payment in stuck:
            if not payment.out_refund_no:
                report.unchanged += 1
                continue
            try:
                handle = await self.gateway.query_refund(payment.out_refund_no, payment.out_trade_no)
                outcome = await self._apply_refund_result(handle)
            except BusinessException as exc:
                report.errors += 1
                logger.warning(
                    "sweep_refund_failed",
                    out_trade_no=payment.out_trade_no,
                    out_refund_no=payment.out_refund_no,
                    error_type=exc.error_type,
                    error=exc.message,
                )
                continue
            if outcome == ApplyOutcome.APPLIED:
                report.applied += 1
            else:
                report.unchanged += 1
        logger.info("sweep_stuck_refunds_done", **asdict(report))
        return report

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------
    async def get_order(self, order_no: str) -> OrderDTO:
        async with self._uow_factory(readonly=True) as uow:
            return to_order_dto(await self._load_order(uow, order_no))

    async def list_orders(self, filters: OrderFilter, page: int = 1, size: int = 20) -> Tuple[List[OrderDTO], int]:
        skip = (max(page, 1) - 1) * size
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list(filters, skip=skip, limit=size)
            total = await uow.order_repository.count(filters)
        return [to_order_dto(o) for o in orders], total

    async def get_payment(self, out_trade_no: str) -> PaymentDTO:
        async with self._uow_factory(readonly=True) as uow:
            return to_payment_dto(await self._load_payment(uow, out_trade_no))

    async def list_payments_for_order(self, order_no: str) -> List[PaymentDTO]:
        async with self._uow_factory(readonly=True) as uow:
            await self._load_order(uow, order_no)
            payments = await uow.payment_repository.list_by_order_no(order_no)
        return [to_payment_dto(p) for p in payments]
