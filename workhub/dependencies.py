"""
Backend selection and dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import Request

from workhub.config import Settings, get_settings
from workhub.db import DbClient, InMemoryDbClient
from workhub.storage import LocalUploadClient, S3UploadClient, UploadClient

logger = logging.getLogger(__name__)

_upload_client: UploadClient | None = None


class BackendSelector:
    """
    Chooses exactly one storage backend for the life of the process.

    The app factory creates one selector and keeps it on ``app.state``. The
    backend is built on first use and cached; callers that arrive while the
    first build is still running await that same attempt instead of starting
    another one. Order of preference:

    1. ``USE_MEMORY_DB`` forces the in-memory backend.
    2. ``USE_MONGODB`` selects MongoDB (embedded when
       ``USE_MONGODB_MEMORY_SERVER`` is set); a failure falls back to memory.
    3. ``USE_POSTGRES`` with ``DATABASE_URL`` selects the SQL backend; a
       failure falls back to memory.
    4. Otherwise the in-memory backend.
    """

    def __init__(self, settings: Optional[Settings] = None, *, mongo_connection=None):
        self.settings = settings or get_settings()
        self._mongo_connection = mongo_connection
        self._client: Optional[DbClient] = None
        self._selecting = False
        self._pending: Optional[asyncio.Future] = None
        self.kind = "Unknown"

    @property
    def client(self) -> Optional[DbClient]:
        return self._client

    async def get_client(self) -> DbClient:
        if self._client is not None:
            return self._client

        if self._selecting and self._pending is not None:
            logger.info("Storage backend is being initialized, waiting for it")
            return await self._pending

        self._selecting = True
        pending = asyncio.get_running_loop().create_future()
        self._pending = pending
        try:
            client = await self._select()
        except Exception as exc:
            pending.set_exception(exc)
            pending.exception()
            raise
        else:
            self._client = client
            pending.set_result(client)
            return client
        finally:
            self._selecting = False
            self._pending = None
            if not pending.done():
                pending.cancel()

    def _memory(self, kind: str) -> DbClient:
        self.kind = kind
        return InMemoryDbClient()

    async def _select(self) -> DbClient:
        settings = self.settings
        if settings.use_memory_db:
            logger.info("Using in-memory storage (explicitly configured)")
            return self._memory("In-Memory Storage")

        logger.info(
            "Environment settings - USE_MONGODB: %s, USE_MONGODB_MEMORY_SERVER: %s, "
            "USE_POSTGRES: %s, USE_MEMORY_DB: %s",
            settings.use_mongodb,
            settings.use_mongodb_memory_server,
            settings.use_postgres,
            settings.use_memory_db,
        )

        if settings.use_mongodb:
            if settings.database_url:
                logger.info("Ignoring DATABASE_URL because USE_MONGODB is set")
            try:
                client = await self._build_mongo()
            except Exception:
                logger.error("Error initializing MongoDB storage", exc_info=True)
                logger.warning("Falling back to in-memory storage (MongoDB initialization failed)")
                return self._memory("In-Memory Storage (MongoDB fallback)")
            self.kind = (
                "MongoDB Memory Server" if settings.use_mongodb_memory_server else "MongoDB"
            )
            logger.info("Using %s storage", self.kind)
            return client

        if settings.use_postgres and settings.database_url:
            try:
                client = await self._build_sql()
            except Exception:
                logger.error("Error initializing SQL storage", exc_info=True)
                logger.warning("Falling back to in-memory storage (SQL initialization failed)")
                return self._memory("In-Memory Storage (PostgreSQL fallback)")
            dialect = client.engine.dialect.name
            self.kind = "PostgreSQL" if dialect == "postgresql" else f"SQL ({dialect})"
            logger.info("Using %s storage", self.kind)
            return client

        logger.info("No database configuration found, using in-memory storage")
        return self._memory("In-Memory Storage (default)")

    async def _build_mongo(self) -> DbClient:
        # Imported here so the in-memory backend works without the Mongo driver.
        from workhub.mongo_db import MongoConnection, MongoDbClient

        if self._mongo_connection is None:
            self._mongo_connection = MongoConnection(self.settings)
        await self._mongo_connection.prepare()
        return MongoDbClient(self._mongo_connection)

    async def _build_sql(self) -> DbClient:
        from workhub.sql_db import SqlDbClient

        client = SqlDbClient(self.settings.database_url)
        await client.init_schema()
        return client

    async def close(self) -> None:
        client = self._client
        if client is None:
            return
        if client.kind == "sql":
            await client.dispose()
        elif client.kind == "mongodb" and self._mongo_connection is not None:
            await self._mongo_connection.close()


def get_selector(request: Request) -> BackendSelector:
    return request.app.state.selector


async def get_db_client(request: Request) -> DbClient:
    """Return the process-wide storage backend, building it on first use."""
    return await get_selector(request).get_client()


def get_upload_client() -> UploadClient:
    global _upload_client
    if _upload_client:
        return _upload_client

    settings = get_settings()
    if settings.s3_bucket:
        _upload_client = S3UploadClient(
            bucket=settings.s3_bucket,
            region=settings.s3_region or "",
            endpoint=settings.s3_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    else:
        _upload_client = LocalUploadClient(
            root=settings.upload_dir, base_url=settings.upload_base_url
        )
    return _upload_client
