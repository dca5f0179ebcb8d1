"""
Shared business codes used across layers (Domain/Application/Infrastructure).

This package exposes BusinessCode at `shared.codes` and keeps
provider-specific codes under `shared.codes.provider_codes`.
"""
from enum import IntEnum


class BusinessCode(IntEnum):
    """Unified business status codes (single source of truth)."""

    # Success
    SUCCESS = 0

    # Parameter errors (1xxxx)
    PARAM_ERROR = 10000
    PARAM_VALIDATION_ERROR = 10003

    # Business errors (2xxxx)
    BUSINESS_ERROR = 20000
    NOT_FOUND = 20006  # Generic resource not found
    DUPLICATE_REFERENCE = 20007
    WALLET_NOT_FOUND = 20100
    INSUFFICIENT_BALANCE = 20101
    CATALOG_ITEM_NOT_FOUND = 20200
    CATALOG_ITEM_INACTIVE = 20201
    ORDER_NOT_FOUND = 20300
    ORDER_NOT_CANCELLABLE = 20301
    ORDER_NOT_TOP_UP_ELIGIBLE = 20302

    # System errors (4xxxx)
    SYSTEM_ERROR = 40000
    DATABASE_ERROR = 40001
    NETWORK_ERROR = 40002
    SERVICE_UNAVAILABLE = 40003
    INCONSISTENT_STATE = 40010


__all__ = ["BusinessCode"]
