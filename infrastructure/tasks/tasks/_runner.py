"""Run one async service call inside a Celery task.

Each task gets its own event loop (asyncio.run), so the services bundle, the
Redis client and the pooled database connections are torn down per run.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from infrastructure.bootstrap import Services, build_services
from infrastructure.cache import shutdown_redis_cache
from infrastructure.database import engine


T = TypeVar("T")


def run_with_services(fn: Callable[[Services], Awaitable[T]]) -> T:
    async def _run() -> Any:
        services = await build_services()
        try:
            return await fn(services)
        finally:
            await services.aclose()
            await shutdown_redis_cache()
            # asyncpg connections are bound to the loop that opened them
            await engine.dispose()

    return asyncio.run(_run())
