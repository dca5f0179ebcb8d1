"""
数据库配置和连接管理

生产环境使用 PostgreSQL（asyncpg）；本地与测试使用 SQLite（aiosqlite）。
"""
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from core.config import settings
from infrastructure.models import Base

_ASYNC_DRIVERS = {
    "postgresql": "postgresql+asyncpg",
    "postgres": "postgresql+asyncpg",
    "sqlite": "sqlite+aiosqlite",
}


def _build_async_url(database_url: str) -> str:
    """确保数据库URL使用异步驱动"""
    url = make_url(database_url)
    if "+" in url.drivername:
        return database_url
    if url.drivername not in _ASYNC_DRIVERS:
        raise ValueError(f"不支持的数据库驱动: {url.drivername}，仅支持 PostgreSQL 与 SQLite")
    return url.set(drivername=_ASYNC_DRIVERS[url.drivername]).render_as_string(hide_password=False)


def build_engine(database_url: str) -> AsyncEngine:
    """按方言选择连接池参数

    内存 SQLite 必须共享同一连接，否则每个 saga 步骤的会话都会看到一个空库。
    """
    async_url = _build_async_url(database_url)
    url = make_url(async_url)
    if url.get_backend_name() == "sqlite":
        options = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return create_async_engine(async_url, echo=settings.database.echo, **options)

    return create_async_engine(
        async_url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_recycle=settings.database.pool_recycle,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database.url)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def create_tables(bind: AsyncEngine = engine) -> None:
    """
    创建钱包、账本、目录、订单与返佣表

    不做迁移管理，已存在的表保持不变。
    """
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
