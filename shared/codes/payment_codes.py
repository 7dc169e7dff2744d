"""
Payment specific codes and provider status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Provider trade_state -> gateway result kind consumed by PaymentRecord.apply_gateway_result.
# "success" / "failure" are terminal for the attempt, "pending" leaves it untouched.
PROVIDER_STATUS_TO_INTERNAL = {
    "wechat": {
        "SUCCESS": "success",
        "REFUND": "success",  # paid, then (partially) refunded
        "NOTPAY": "pending",
        "USERPAYING": "pending",
        "ACCEPT": "pending",
        "CLOSED": "failure",
        "REVOKED": "failure",
        "PAYERROR": "failure",
    },
}

# Provider refund status -> refund result kind.
PROVIDER_REFUND_STATUS_TO_INTERNAL = {
    "wechat": {
        "SUCCESS": "success",
        "PROCESSING": "pending",
        "CLOSED": "failure",
        "ABNORMAL": "failure",
    },
}

# Provider error codes that leave the outcome of a request unknown even on a 4xx.
PROVIDER_UNCERTAIN_CODES = {
    "wechat": {"SYSTEM_ERROR", "SYSTEMERROR", "FREQUENCY_LIMITED", "BIZERR_NEED_RETRY"},
}


def is_definite_rejection(provider: str, status: int | None, provider_code: str | None) -> bool:
    """True when the provider answered and refused the request outright."""
    if status is None or not 400 <= int(status) < 500:
        return False
    return provider_code not in PROVIDER_UNCERTAIN_CODES.get(provider, set())
