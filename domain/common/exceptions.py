"""领域层业务异常定义，供领域、应用与基础设施使用。

Provider failures live here too: the application layer must be able to tell a
transient upstream failure from a permanent rejection without importing
infrastructure code.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from shared.codes import BusinessCode
from shared.codes.provider_codes import ProviderCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
        format_params: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        self.format_params = format_params
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
        format_params: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
            format_params=format_params,
        )


class WalletNotFoundException(BusinessException):
    def __init__(self, user_id: int):
        super().__init__(
            code=BusinessCode.WALLET_NOT_FOUND,
            message="Wallet not found",
            error_type="WalletNotFound",
            details={"user_id": user_id},
            message_key="wallet.not_found",
        )


class InsufficientBalanceException(BusinessException):
    def __init__(self, user_id: int, required: Decimal, available: Optional[Decimal] = None):
        details = {"user_id": user_id, "required": str(required)}
        if available is not None:
            details["available"] = str(available)
        super().__init__(
            code=BusinessCode.INSUFFICIENT_BALANCE,
            message="Insufficient balance",
            error_type="InsufficientBalance",
            details=details,
            message_key="wallet.balance.insufficient",
        )


class CatalogItemNotFoundException(BusinessException):
    def __init__(self, item_id: Optional[int] = None, *, provider: Optional[str] = None):
        details = {}
        if item_id is not None:
            details["item_id"] = item_id
        if provider is not None:
            details["provider"] = provider
        super().__init__(
            code=BusinessCode.CATALOG_ITEM_NOT_FOUND,
            message="Catalog item not found",
            error_type="CatalogItemNotFound",
            details=details or None,
            message_key="catalog.item.not_found",
        )


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: int):
        super().__init__(
            code=BusinessCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
            message_key="order.not_found",
        )


class OrderNotCancellableException(BusinessException):
    def __init__(self, order_id: Optional[int], status: str):
        super().__init__(
            code=BusinessCode.ORDER_NOT_CANCELLABLE,
            message=f"Order in status {status} cannot be cancelled",
            error_type="OrderNotCancellable",
            details={"order_id": order_id, "status": status},
            message_key="order.not_cancellable",
        )


class ProviderRejectedException(BusinessException):
    """Permanent provider failure; retrying with the same provider is pointless."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(
            code=ProviderCode.PROVIDER_REJECTED,
            message=message,
            error_type="ProviderRejected",
            details=full_details,
        )


class ProviderUnavailableException(BusinessException):
    """Transient provider failure that escaped the remote client's retries."""

    def __init__(self, message: str, *, provider: str, provider_code: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "provider_code": provider_code}
        if details:
            full_details.update(details)
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(
            code=ProviderCode.PROVIDER_UNAVAILABLE,
            message=message,
            error_type="ProviderUnavailable",
            details=full_details,
        )


class ProviderNotAvailableException(BusinessException):
    """No registered or enabled provider can serve the request."""

    def __init__(self, provider: Optional[str] = None, *, reason: str = "Provider not available"):
        super().__init__(
            code=ProviderCode.PROVIDER_NOT_AVAILABLE,
            message=reason,
            error_type="ProviderNotAvailable",
            details={"provider": provider} if provider else None,
        )


class InconsistentStateException(BusinessException):
    """Money left the wallet with neither a delivered good nor a refund."""

    def __init__(self, message: str, *, reference: str, details: Optional[dict] = None):
        full_details = {"reference": reference}
        if details:
            full_details.update(details)
        self.reference = reference
        super().__init__(
            code=BusinessCode.INCONSISTENT_STATE,
            message=message,
            error_type="InconsistentState",
            details=full_details,
        )
