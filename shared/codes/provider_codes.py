"""
Provider specific codes and provider status mapping.

Values on the right-hand side are internal order statuses
(see domain.order.entity.OrderStatus). Lookups are case sensitive except where
an adapter normalises the raw value first (JAP lowercases).
"""
from __future__ import annotations

from enum import IntEnum


class ProviderCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_REJECTED = 60000
    PROVIDER_UNAVAILABLE = 60001
    PROVIDER_NOT_AVAILABLE = 60002
    TIMEOUT = 60003
    RATE_LIMITED = 60004


# Statuses not listed here fall back to "pending" in the adapters.
PROVIDER_STATUS_TO_INTERNAL = {
    "5sim": {
        "PENDING": "processing",
        "RECEIVED": "processing",
        "CANCELED": "cancelled",
        "TIMEOUT": "expired",
        "FINISHED": "completed",
        "BANNED": "refunded",
    },
    "grizzlysms": {
        "STATUS_OK": "processing",
        "STATUS_WAIT_CODE": "processing",
        "STATUS_WAIT_RETRY": "processing",
        "STATUS_WAIT_RESEND": "processing",
        "STATUS_CANCEL": "cancelled",
        "ACCESS_ACTIVATION": "completed",
    },
    "zendit": {
        "DONE": "active",
        "FAILED": "failed",
        "PENDING": "pending",
        "ACCEPTED": "pending",
        "AUTHORIZED": "pending",
        "IN_PROGRESS": "processing",
        "REFUNDED": "refunded",
    },
    "jap": {
        "pending": "processing",
        "in progress": "processing",
        "processing": "processing",
        "completed": "completed",
        "partial": "completed",
        "canceled": "cancelled",
        "cancelled": "cancelled",
    },
}
