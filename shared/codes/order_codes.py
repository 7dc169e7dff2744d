"""
Order lifecycle codes (7xxxx).
"""
from __future__ import annotations

from enum import IntEnum


class OrderCode(IntEnum):
    ORDER_NOT_FOUND = 70000
    ORDER_ALREADY_EXISTS = 70001
    INVALID_TRANSITION = 70002
    CONCURRENT_MODIFICATION = 70003
    PAYMENT_NOT_FOUND = 70004
