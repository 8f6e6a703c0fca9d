from contextlib import asynccontextmanager
import logging
import os
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from aihub_query.config import QUERY_DB_URL
from aihub_query.db.orm.base import Base
from aihub_query.storage import S3Storage

# registers the tables on Base.metadata
from aihub_query.db.orm import manifest as _manifest  # noqa: F401
from aihub_query.db.orm import query_result as _query_result  # noqa: F401


def to_async_url(url: str) -> str:
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class Connections:
    def __init__(
        self,
        query_db_url: str | None = None,
        storage=None,
    ):
        self.storage = storage if storage is not None else S3Storage()

        self.query_db_url = to_async_url(query_db_url or QUERY_DB_URL)
        logging.info(f"Connecting to query database at {self.query_db_url}")
        if self.query_db_url.startswith("sqlite"):
            self._ensure_sqlite_dir(self.query_db_url)
            self.query_db_engine = create_async_engine(self.query_db_url, echo=False)
        else:
            self.query_db_engine = create_async_engine(
                self.query_db_url,
                echo=False,
                pool_size=20,
                max_overflow=10,
                pool_pre_ping=True,
                pool_recycle=3600,
            )
        self.query_db_session = async_sessionmaker(
            self.query_db_engine, class_=AsyncSession, expire_on_commit=False
        )

    @staticmethod
    def _ensure_sqlite_dir(url: str):
        path = url.split(":///", 1)[-1]
        if path and path != ":memory:":
            os.makedirs(Path(path).parent, exist_ok=True)

    async def init_db(self):
        async with self.query_db_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def get_query_db_session(self):
        async with self.query_db_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self):
        await self.query_db_engine.dispose()
