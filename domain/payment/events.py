"""
Payment domain events.

Dataclass events record important payment lifecycle facts for downstream handling
(e.g., messaging, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    out_trade_no: str
    order_no: str
    provider: str
    provider_ref: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PaymentInitiated(PaymentEvent):
    amount: int = 0


@dataclass
class PaymentSucceeded(PaymentEvent):
    amount: int = 0


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PaymentRefundRequested(PaymentEvent):
    out_refund_no: str = ""
    amount: int = 0


@dataclass
class PaymentRefunded(PaymentEvent):
    refund_id: str = ""
    amount: int = 0


@dataclass
class PaymentRefundFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PaymentCanceled(PaymentEvent):
    pass
