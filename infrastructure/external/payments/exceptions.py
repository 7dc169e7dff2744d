"""
Exceptions for payment providers mapped onto the domain gateway taxonomy.

Adapters raise these; the application layer only needs to know about
GatewayException and AuthenticityException.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import AuthenticityException, GatewayException
from shared.codes.payment_codes import PaymentCode, is_definite_rejection


class PaymentProviderError(GatewayException):
    """The provider answered with an error; 4xx business codes are definite rejections."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        provider_code: str | None = None,
        status: int | None = None,
        details: Optional[dict] = None,
    ):
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            details={"status": status, **(details or {})},
            code=PaymentCode.PROVIDER_ERROR,
            error_type="PaymentProviderError",
            rejected=is_definite_rejection(provider, status, provider_code),
        )


class PaymentRecoverableError(GatewayException):
    """Transport-level failure; retrying the same request is safe."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            details=details,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="PaymentRecoverableError",
        )


class PaymentTimeoutError(GatewayException):
    """The provider may or may not have processed the request."""

    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(
            message,
            provider=provider,
            details=details,
            code=PaymentCode.TIMEOUT,
            error_type="PaymentTimeoutError",
        )


class PaymentSignatureError(AuthenticityException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None):
        super().__init__(message, provider=provider, details=details)
        self.error_type = "PaymentSignatureError"
