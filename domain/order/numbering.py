"""
Identifier generation for orders, payment attempts and refunds.

No central sequence is used; the unique indexes on `order_no` and
`out_trade_no` catch the rare collision and callers regenerate.
"""
from __future__ import annotations

import secrets
import string
import time
from datetime import datetime
from typing import Optional

from domain.common.exceptions import DomainValidationException


_BASE36 = string.digits + string.ascii_lowercase


def _epoch_millis() -> int:
    return time.time_ns() // 1_000_000


def generate_order_no(tenant_id: str, now: Optional[datetime] = None) -> str:
    """TENANT + YYYYMMDD + 6-digit millisecond segment + 4 random digits."""
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise DomainValidationException("tenant id is required", field="platform_id")
    now = now or datetime.now()
    millis = str(_epoch_millis())[-6:]
    suffix = f"{secrets.randbelow(10_000):04d}"
    return f"{tenant_id.strip().upper()}{now:%Y%m%d}{millis}{suffix}"


def _short_trade_no(prefix: str) -> str:
    # prefix + 10 digits + 4 base36 chars stays far below the 32-byte gateway limit
    millis = str(_epoch_millis())[-10:]
    suffix = "".join(secrets.choice(_BASE36) for _ in range(4))
    return f"{prefix}{millis}{suffix}"


def generate_out_trade_no() -> str:
    return _short_trade_no("WX")


def generate_out_refund_no() -> str:
    return _short_trade_no("RF")
