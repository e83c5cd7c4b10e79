from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog
from neo4j import READ_ACCESS, WRITE_ACCESS, AsyncDriver, AsyncGraphDatabase, Query
from neo4j.exceptions import DriverError, Neo4jError

from fundgraph.core.config import Settings, settings

logger = structlog.get_logger(__name__)

_COUNTER_FIELDS = (
    "nodes_created",
    "nodes_deleted",
    "relationships_created",
    "relationships_deleted",
    "properties_set",
    "constraints_added",
    "indexes_added",
)


@dataclass(frozen=True)
class GraphResult:
    records: list[dict[str, Any]]
    summary: dict[str, Any] = field(default_factory=dict)


def _summary_to_dict(summary: Any) -> dict[str, Any]:
    counters = getattr(summary, "counters", None)
    return {
        "counters": {name: int(getattr(counters, name, 0) or 0) for name in _COUNTER_FIELDS},
        "result_available_after": getattr(summary, "result_available_after", None),
        "result_consumed_after": getattr(summary, "result_consumed_after", None),
    }


class GraphSink:
    """
    Thin async wrapper over the Neo4j driver.

    Every statement runs in its own auto-commit session with a fixed timeout.
    Timeouts and driver errors propagate to the caller; nothing is retried here.
    """

    def __init__(self, driver: AsyncDriver, *, database: str, timeout_seconds: float) -> None:
        self._driver = driver
        self._database = database
        self._timeout = timeout_seconds

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> GraphSink:
        cfg = cfg or settings
        driver = AsyncGraphDatabase.driver(cfg.neo4j_uri, auth=(cfg.neo4j_user, cfg.neo4j_password))
        return cls(driver, database=cfg.neo4j_database, timeout_seconds=cfg.neo4j_query_timeout_seconds)

    async def __aenter__(self) -> GraphSink:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> None:
        await self._driver.verify_connectivity()
        logger.info("graph.connected", database=self._database)

    async def test_connection(self) -> bool:
        try:
            await self._driver.verify_connectivity()
        except (Neo4jError, DriverError, OSError) as exc:
            logger.error("graph.connection_failed", error=str(exc), error_type=type(exc).__name__)
            return False
        return True

    async def run(self, query: str, params: Mapping[str, Any] | None = None) -> GraphResult:
        return await self._run(query, params, access_mode=WRITE_ACCESS)

    async def run_read(self, query: str, params: Mapping[str, Any] | None = None) -> GraphResult:
        """Run in a read-access session; the server rejects any statement that writes."""
        return await self._run(query, params, access_mode=READ_ACCESS)

    async def _run(self, query: str, params: Mapping[str, Any] | None, *, access_mode: str) -> GraphResult:
        async with self._driver.session(database=self._database, default_access_mode=access_mode) as session:
            result = await session.run(Query(query, timeout=self._timeout), dict(params or {}))
            records = await result.data()
            summary = await result.consume()
        return GraphResult(records=records, summary=_summary_to_dict(summary))

    async def close(self) -> None:
        await self._driver.close()
