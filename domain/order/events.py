"""
Order domain events.

Dataclass events record purchase saga facts for downstream handling
(notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class OrderEvent:
    reference: str
    user_id: int
    provider: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class OrderCommitted(OrderEvent):
    order_id: Optional[int] = None
    amount: str = ""


@dataclass
class OrderCompensated(OrderEvent):
    order_id: Optional[int] = None
    amount: str = ""
    reason: Optional[str] = None


@dataclass
class CompensationFailed(OrderEvent):
    amount: str = ""
    reason: Optional[str] = None


@dataclass
class OrderCancelled(OrderEvent):
    order_id: Optional[int] = None
    refund_reference: str = ""
    amount: str = ""


@dataclass
class SubscriptionCommitted(OrderEvent):
    order_id: Optional[int] = None
    subscription_id: Optional[int] = None
    amount: str = ""
