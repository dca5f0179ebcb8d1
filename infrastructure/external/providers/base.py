"""
Base provider adapter implementing shared concerns: remote client, result
unwrapping, status mapping and logging.

Concrete providers subclass and implement provider-specific payload handling.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from application.dtos.providers import CatalogPage, Country, ProviderBalance
from core.logging_config import get_logger
from core.settings import ProviderEndpoint, RemoteRetry, provider_settings
from domain.catalog.entity import ItemKind
from domain.common.clock import ensure_utc
from domain.common.exceptions import ProviderRejectedException, ProviderUnavailableException
from domain.order.entity import OrderStatus
from infrastructure.external.api_clients import CallObserver, EnvelopeError, RemoteClient, RemoteResult
from shared.codes.provider_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


def to_decimal(value: Any, default: str = "0") -> Decimal:
    try:
        return Decimal(str(value)) if value is not None and value != "" else Decimal(default)
    except (InvalidOperation, ValueError):
        return Decimal(default)


class BaseProviderAdapter:
    identifier: str = "base"
    display_name: str = "Base"
    kind: ItemKind = ItemKind.PHONE_NUMBER
    uses_reference_as_order_id: bool = False

    def __init__(
        self,
        config: ProviderEndpoint,
        *,
        retry: Optional[RemoteRetry] = None,
        observer: Optional[CallObserver] = None,
        client: Optional[RemoteClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        retry = retry or provider_settings.remote
        self.client = client or RemoteClient(
            self.identifier,
            config.base_url,
            timeout=config.timeout,
            connect_timeout=config.connect_timeout,
            attempts=retry.attempts,
            backoff_base=retry.backoff_base,
            envelope=self._envelope,
            observer=observer,
            transport=transport,
        )

    def is_enabled(self) -> bool:
        """Enabled only when switched on and credentials are present."""
        return bool(self.config.enabled and self.config.api_key)

    async def aclose(self) -> None:
        await self.client.aclose()

    # Defaults for capabilities a provider does not have

    async def get_countries(self) -> list[Country]:
        return []

    async def list_catalog(self, limit: int, offset: int) -> CatalogPage:
        return CatalogPage(items=[], total=0)

    # Helpers

    def _envelope(self, data: Any) -> Optional[EnvelopeError]:
        """Detect an error carried in a 2xx body; None when the body is a success."""
        if isinstance(data, dict) and data.get("error"):
            return EnvelopeError(message=str(data["error"]), code=str(data.get("code") or data["error"]))
        return None

    def _unwrap(self, result: RemoteResult, action: str) -> Any:
        """Return the payload of a successful result or raise the matching provider error."""
        if result.success:
            return result.data
        self._log(
            "provider_call_failed",
            action=action,
            status_code=result.status_code,
            error=result.message,
            retryable=result.retryable,
        )
        if result.retryable:
            raise ProviderUnavailableException(
                result.message,
                provider=self.identifier,
                provider_code=result.error_code,
                details={"action": action},
            )
        raise ProviderRejectedException(
            result.message,
            provider=self.identifier,
            provider_code=result.error_code,
            details={"action": action},
        )

    def map_status(self, provider_status: Optional[str]) -> OrderStatus:
        """Map a raw provider status to the internal enum; unknown values are pending."""
        if not provider_status:
            return OrderStatus.PENDING
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.identifier, {})
        return OrderStatus.from_internal(mapping.get(provider_status))

    def _balance_failure(self, exc: Exception) -> ProviderBalance:
        return ProviderBalance(
            provider=self.identifier,
            success=False,
            message=getattr(exc, "message", None) or str(exc),
        )

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.identifier,
            **kwargs,
        )


def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse provider ISO-8601 timestamps ('Z' suffix allowed); bad values become None."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ensure_utc(parsed)
