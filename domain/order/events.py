"""
Order domain events.

Collected on the aggregate while it transitions and drained by the
application service after the transaction commits.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    order_no: str
    platform_id: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderCreated(OrderEvent):
    amount: int = 0


@dataclass
class OrderPaid(OrderEvent):
    amount: int = 0


@dataclass
class OrderShipped(OrderEvent):
    pass


@dataclass
class OrderDelivered(OrderEvent):
    pass


@dataclass
class OrderCancelled(OrderEvent):
    reason: Optional[str] = None


@dataclass
class OrderRefundRequested(OrderEvent):
    amount: int = 0


@dataclass
class OrderRefunded(OrderEvent):
    amount: int = 0
