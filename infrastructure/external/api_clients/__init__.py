"""
API客户端模块

提供与外部提供商 REST API 集成的客户端实现
"""
from .base import ApiCallRecord, CallObserver, EnvelopeError, RemoteClient, RemoteResult, TransientRemoteError

__all__ = [
    "ApiCallRecord",
    "CallObserver",
    "EnvelopeError",
    "RemoteClient",
    "RemoteResult",
    "TransientRemoteError",
]
