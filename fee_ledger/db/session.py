from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from fee_ledger.core.config import settings


def _engine_options(url: str) -> dict:
    options = {"echo": False, "future": True}
    # pool_pre_ping: check the connection is alive before use; pointless for file/memory SQLite
    if not url.startswith("sqlite"):
        options["pool_pre_ping"] = True
        options["pool_recycle"] = 300
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# expire_on_commit=False: ledgers are read back into responses after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_db() -> AsyncSession:
    async with AsyncSessionLocal() as session:
        yield session


async def create_tables() -> None:
    """Create all tables on the configured engine."""
    import fee_ledger.core.models  # noqa: F401  registers every model on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
