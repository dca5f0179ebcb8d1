"""
Background job port.

Lets the purchase flow ask for a delayed status refresh without importing
Celery.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class TaskScheduler(Protocol):
    def refresh_order_status(self, order_id: int, countdown: Optional[int] = None) -> None: ...
