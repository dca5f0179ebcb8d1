"""
Provider-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so credentials for upstream providers live
in one place, e.g. PROVIDERS__ZENDIT__API_KEY or PROVIDERS__REMOTE__ATTEMPTS.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class RemoteRetry(BaseModel):
    # Total attempts per call, including the first one.
    attempts: int = 3
    # Seconds; the n-th retry waits backoff_base * n.
    backoff_base: float = 2.0


class ProviderEndpoint(BaseModel):
    enabled: bool = False
    api_key: Optional[str] = None
    base_url: str
    timeout: float = 30.0
    connect_timeout: float = 10.0


class FiveSimSettings(ProviderEndpoint):
    base_url: str = "https://5sim.net/v1"
    timeout: float = 5.0
    connect_timeout: float = 3.0


class GrizzlySettings(ProviderEndpoint):
    base_url: str = "https://api.grizzlysms.com/stubs/handler_api.php"
    timeout: float = 10.0
    connect_timeout: float = 5.0


class ZenditSettings(ProviderEndpoint):
    base_url: str = "https://api.zendit.io/v1"
    timeout: float = 30.0
    connect_timeout: float = 15.0


class JapSettings(ProviderEndpoint):
    base_url: str = "https://justanotherpanel.com/api/v2"
    timeout: float = 30.0
    connect_timeout: float = 10.0


class ProviderSettings(BaseSettings):
    remote: RemoteRetry = Field(default_factory=RemoteRetry)

    fivesim: FiveSimSettings = Field(default_factory=FiveSimSettings)
    grizzlysms: GrizzlySettings = Field(default_factory=GrizzlySettings)
    zendit: ZenditSettings = Field(default_factory=ZenditSettings)
    jap: JapSettings = Field(default_factory=JapSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PROVIDERS__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


provider_settings = ProviderSettings()
