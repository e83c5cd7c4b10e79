from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from fundgraph.core.config import settings
from fundgraph.shared.exceptions import ValidationError

logger = structlog.get_logger(__name__)

# Tables the migration reads. Table names are interpolated into SQL, so only these are accepted.
SOURCE_TABLES: tuple[str, ...] = (
    "tenants",
    "users",
    "user_entities",
    "user_funds",
    "subscriptions",
    "navs",
    "movements",
    "transactions",
)


class RowSource:
    """Read-only access to the relational store. Rows come back as plain dicts."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @classmethod
    def from_url(cls, database_url: str | None = None) -> RowSource:
        engine = create_async_engine(database_url or settings.database_url, pool_pre_ping=True)
        return cls(engine)

    async def __aenter__(self) -> RowSource:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        async with self._engine.connect() as conn:
            result = await conn.execute(text(sql), dict(params or {}))
            return [dict(row) for row in result.mappings().all()]

    async def fetch_table(
        self,
        table: str,
        *,
        tenant_id: str | None = None,
        order_by: tuple[str, ...] = (),
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        if table not in SOURCE_TABLES:
            raise ValidationError(f"Unsupported source table: {table}")

        tenant_column = "id" if table == "tenants" else "tenant_id"
        sql = f"SELECT * FROM {table}"
        params: dict[str, Any] = {}
        if tenant_id is not None:
            sql += f" WHERE {tenant_column} = :tenant_id"
            params["tenant_id"] = tenant_id
        if order_by:
            sql += " ORDER BY " + ", ".join(order_by)
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = int(limit)
        return await self.query(sql, params)

    async def test_connection(self) -> bool:
        try:
            rows = await self.query("SELECT 1 AS ok")
        except (SQLAlchemyError, OSError) as exc:
            logger.error("source.connection_failed", error=str(exc), error_type=type(exc).__name__)
            return False
        ok = bool(rows) and rows[0].get("ok") == 1
        logger.info("source.connection_ok" if ok else "source.connection_unexpected", rows=len(rows))
        return ok

    async def get_table_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for table in SOURCE_TABLES:
            try:
                rows = await self.query(f"SELECT COUNT(*) AS count FROM {table}")
            except SQLAlchemyError as exc:
                logger.warning("source.count_failed", table=table, error=str(exc))
                counts[table] = 0
                continue
            counts[table] = int(rows[0]["count"])
        return counts

    async def close(self) -> None:
        await self._engine.dispose()
