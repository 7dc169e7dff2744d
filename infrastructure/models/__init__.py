"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel
from .payment import PaymentRecordModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "PaymentRecordModel",
]
