"""
提供商 REST 客户端

提供通用的HTTP调用功能，包括：
- 传输错误与 5xx 自动重试（线性退避）
- 4xx 立即失败，不重试
- 200 响应中的提供商错误信封统一转换为失败结果
- 每次尝试的审计日志与可选观察者回调
- 独立的连接超时与请求超时

调用方拿到的始终是 RemoteResult，不会收到 httpx 异常。
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from core.logging_config import get_logger


logger = get_logger(__name__)
# tenacity's before_sleep_log expects a stdlib logger
_retry_logger = logging.getLogger(__name__)


@dataclass
class RemoteResult:
    """统一的调用结果"""
    success: bool
    message: str = ""
    data: Any = None
    error_code: Optional[str] = None
    status_code: Optional[int] = None
    retryable: bool = False


@dataclass(frozen=True)
class ApiCallRecord:
    """单次 HTTP 尝试的审计记录"""
    provider: str
    method: str
    endpoint: str
    status_code: Optional[int]
    latency_ms: float
    attempt: int
    caller: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class EnvelopeError:
    """HTTP 200 但业务失败的提供商响应"""
    message: str
    code: Optional[str] = None


class TransientRemoteError(Exception):
    """可重试的服务端错误（5xx）"""

    def __init__(self, message: str, status_code: int, data: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.data = data


EnvelopeHook = Callable[[Any], Optional[EnvelopeError]]
CallObserver = Callable[[ApiCallRecord], None]


def _parse_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return text.strip()


def _error_message(data: Any, default: str) -> str:
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and value.get("message"):
                return str(value["message"])
    if isinstance(data, str) and data:
        return data[:200]
    return default


def _error_code(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        code = data.get("code") or data.get("error_code")
        if code is not None:
            return str(code)
    return None


class RemoteClient:
    """
    提供商 HTTP 客户端

    attempts 为总尝试次数；第 n 次失败后等待 backoff_base × n 秒。
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        *,
        timeout: float = 30.0,
        connect_timeout: float = 10.0,
        attempts: int = 3,
        backoff_base: float = 2.0,
        headers: Optional[Dict[str, str]] = None,
        envelope: Optional[EnvelopeHook] = None,
        observer: Optional[CallObserver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.attempts = max(1, attempts)
        self.backoff_base = backoff_base
        self.default_headers = {
            "Accept": "application/json",
            "User-Agent": "provider-orchestrator/1.0",
        }
        if headers:
            self.default_headers.update(headers)
        self._envelope = envelope
        self._observer = observer
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def set_auth_token(self, token: str, header_name: str = "Authorization", prefix: str = "Bearer") -> None:
        """设置认证令牌"""
        self.default_headers[header_name] = f"{prefix} {token}" if prefix else token

    def _timeouts(self, timeout: Optional[float]) -> httpx.Timeout:
        return httpx.Timeout(timeout or self.timeout, connect=self.connect_timeout)

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeouts(None),
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def __aenter__(self) -> "RemoteClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    def _build_url(self, endpoint: str) -> str:
        if not endpoint:
            return self.base_url
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _record(self, record: ApiCallRecord) -> None:
        logger.info(
            "provider_api_call",
            provider=record.provider,
            method=record.method,
            endpoint=record.endpoint,
            status_code=record.status_code,
            latency_ms=record.latency_ms,
            attempt=record.attempt,
            caller=record.caller,
            error=record.error,
        )
        if self._observer is not None:
            try:
                self._observer(record)
            except Exception as exc:
                logger.warning("provider_api_observer_failed", provider=self.provider, error=str(exc))

    async def call(
        self,
        method: str,
        endpoint: str = "",
        *,
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, Any]] = None,
        form: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        caller: Optional[str] = None,
    ) -> RemoteResult:
        """
        发送请求

        Args:
            method: HTTP方法
            endpoint: 相对 base_url 的路径
            body: JSON 请求体
            query: 查询参数
            form: 表单数据
            timeout: 本次调用的请求超时（连接超时不变）
            caller: 审计日志中的调用方标识
        """
        method = method.upper()
        url = self._build_url(endpoint)
        attempt_no = 0

        async def _send_once() -> RemoteResult:
            nonlocal attempt_no
            attempt_no += 1
            started = time.perf_counter()
            try:
                response = await self.client.request(
                    method,
                    url,
                    params=query,
                    json=body,
                    data=form,
                    headers=self.default_headers,
                    timeout=self._timeouts(timeout),
                )
            except httpx.TransportError as exc:
                self._record(ApiCallRecord(
                    provider=self.provider,
                    method=method,
                    endpoint=endpoint,
                    status_code=None,
                    latency_ms=round((time.perf_counter() - started) * 1000, 2),
                    attempt=attempt_no,
                    caller=caller,
                    error=f"{type(exc).__name__}: {exc}",
                ))
                raise

            data = _parse_body(response)
            self._record(ApiCallRecord(
                provider=self.provider,
                method=method,
                endpoint=endpoint,
                status_code=response.status_code,
                latency_ms=round((time.perf_counter() - started) * 1000, 2),
                attempt=attempt_no,
                caller=caller,
            ))

            if response.status_code >= 500:
                raise TransientRemoteError(
                    f"HTTP {response.status_code}: {_error_message(data, response.reason_phrase)}",
                    status_code=response.status_code,
                    data=data,
                )
            if response.status_code >= 400:
                return RemoteResult(
                    success=False,
                    message=_error_message(data, f"API request failed with status {response.status_code}"),
                    data=data,
                    error_code=_error_code(data),
                    status_code=response.status_code,
                    retryable=response.status_code == 429,
                )
            if self._envelope is not None:
                envelope_error = self._envelope(data)
                if envelope_error is not None:
                    return RemoteResult(
                        success=False,
                        message=envelope_error.message,
                        data=data,
                        error_code=envelope_error.code,
                        status_code=response.status_code,
                        retryable=False,
                    )
            return RemoteResult(success=True, message="OK", data=data, status_code=response.status_code)

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.attempts),
            wait=wait_incrementing(start=self.backoff_base, increment=self.backoff_base),
            retry=retry_if_exception_type((httpx.TransportError, TransientRemoteError)),
            before_sleep=before_sleep_log(_retry_logger, logging.WARNING),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await _send_once()
        except (httpx.TransportError, TransientRemoteError, RetryError) as exc:
            status_code = getattr(exc, "status_code", None)
            last_error = getattr(exc, "message", None) or str(exc) or type(exc).__name__
            logger.warning(
                "provider_api_exhausted",
                provider=self.provider,
                endpoint=endpoint,
                attempts=attempt_no,
                error=last_error,
            )
            return RemoteResult(
                success=False,
                message=f"API connection error after {attempt_no} attempts: {last_error}",
                data=getattr(exc, "data", None),
                status_code=status_code,
                retryable=True,
            )
        # AsyncRetrying with reraise=True always returns or raises above
        raise RuntimeError("unreachable")  # pragma: no cover
