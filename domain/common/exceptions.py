"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。

Taxonomy used by the order/payment engine:

- DomainValidationException: malformed input, rejected before persistence
- InvalidTransitionException: state machine violation, aggregate unchanged
- ConcurrentModificationException: optimistic-lock failure, reload and retry
- AuthenticityException: notification failed verification, never applied
- GatewayException: the provider call itself failed
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.order_codes import OrderCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="ValidationError",
            details=details,
            field=field,
        )


class InvalidTransitionException(BusinessException):
    def __init__(self, entity: str, current: str, action: str):
        super().__init__(
            code=OrderCode.INVALID_TRANSITION,
            message=f"Cannot {action} {entity} in status {current}",
            error_type="InvalidTransition",
            details={"entity": entity, "current": current, "action": action},
            field="status",
        )


class ConcurrentModificationException(BusinessException):
    def __init__(self, entity: str, key: str, expected_version: int | None = None):
        details = {"entity": entity, "key": key}
        if expected_version is not None:
            details["expected_version"] = expected_version
        super().__init__(
            code=OrderCode.CONCURRENT_MODIFICATION,
            message=f"{entity} {key} was modified concurrently, reload and retry",
            error_type="ConcurrentModification",
            details=details,
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_no: str):
        super().__init__(
            code=OrderCode.ORDER_NOT_FOUND,
            message=f"Order not found: {order_no}",
            error_type="OrderNotFound",
            details={"order_no": order_no},
        )


class OrderAlreadyExistsException(BusinessException):
    def __init__(self, order_no: str):
        super().__init__(
            code=OrderCode.ORDER_ALREADY_EXISTS,
            message=f"Order number already taken: {order_no}",
            error_type="OrderAlreadyExists",
            details={"order_no": order_no},
            field="order_no",
        )


class PaymentNotFoundException(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=OrderCode.PAYMENT_NOT_FOUND,
            message=f"Payment record not found: {identifier}",
            error_type="PaymentNotFound",
            details={"identifier": identifier},
        )


class PaymentAlreadyExistsException(BusinessException):
    def __init__(self, out_trade_no: str):
        super().__init__(
            code=BusinessCode.CONFLICT,
            message=f"Trade number already taken: {out_trade_no}",
            error_type="PaymentAlreadyExists",
            details={"out_trade_no": out_trade_no},
            field="out_trade_no",
        )


class GatewayException(BusinessException):
    """
    网关调用失败

    rejected 为 True 表示网关已明确拒绝该请求；否则请求可能已被处理，
    结果需通过查询确认。
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "GatewayError",
        rejected: bool = False,
    ):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=full_details,
        )
        self.rejected = rejected


class AuthenticityException(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="AuthenticityError",
            details=full_details,
        )
