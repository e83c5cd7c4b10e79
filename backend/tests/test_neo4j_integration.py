"""Reconciliation against a live Neo4j. Runs only when NEO4J_URI is set."""
from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Awaitable, Callable
from typing import Any

import pytest
from neo4j.exceptions import Neo4jError

from fundgraph.core.config import Settings
from fundgraph.core.graph import GraphSink
from fundgraph.domain.migration.services.nodes import clear_scope, upsert_nodes
from fundgraph.domain.migration.services.reconciliation import reconcile
from fundgraph.domain.migration.services.verification import verify
from fundgraph.shared.enums import NodeLabel

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not os.environ.get("NEO4J_URI"), reason="NEO4J_URI not set"),
]

SENTINEL = "__NULL__"

TENANT_EDGES = (
    "MATCH (a)-[r]->(b)\n"
    "WHERE a.tenant_id = $tenant_id OR b.tenant_id = $tenant_id OR a.id = $tenant_id\n"
    "RETURN type(r) AS type, count(r) AS count"
)


def _with_sink(work: Callable[[GraphSink, str], Awaitable[Any]]) -> Any:
    tenant = f"it-{uuid.uuid4().hex[:8]}"

    async def go() -> Any:
        sink = GraphSink.from_settings(Settings())
        try:
            await clear_scope(sink, tenant_id=tenant)
            return await work(sink, tenant)
        finally:
            await clear_scope(sink, tenant_id=tenant)
            await sink.close()

    return asyncio.run(go())


async def _seed(sink: GraphSink, tenant: str) -> None:
    key = {"tenant_id": tenant, "fund_name": "Growth Fund", "investment_entity": "Acme LLC"}
    rows = {
        NodeLabel.TENANT: [{"id": tenant, "name": "Integration"}],
        NodeLabel.USER: [{"id": f"{tenant}-u1", "tenant_id": tenant}],
        NodeLabel.USER_ENTITY: [{"id": f"{tenant}-e1", "tenant_id": tenant, "investment_entity": "Acme LLC"}],
        NodeLabel.USER_FUND: [
            {"id": f"{tenant}-f1", "tenant_id": tenant, "fund_name": "Growth Fund"},
            {"id": f"{tenant}-f2", "tenant_id": tenant, "fund_name": "Idle Fund"},
        ],
        NodeLabel.SUBSCRIPTION: [{"id": f"{tenant}-s1", **key}],
        NodeLabel.NAV: [{"id": f"{tenant}-nav", **key}],
    }
    for label, batch in rows.items():
        await upsert_nodes(sink, label, batch, batch_size=50)
    # A legacy loader left a duplicated edge behind.
    await sink.run(
        "MATCH (u:User {id: $user}), (t:Tenant {id: $tenant})\n"
        "CREATE (u)-[:BELONGS_TO]->(t)\n"
        "CREATE (u)-[:BELONGS_TO]->(t)",
        {"user": f"{tenant}-u1", "tenant": tenant},
    )


async def _edge_counts(sink: GraphSink, tenant: str) -> dict[str, int]:
    result = await sink.run(TENANT_EDGES, {"tenant_id": tenant})
    return {r["type"]: r["count"] for r in result.records}


def test_reconcile_against_neo4j_is_complete_and_idempotent():
    async def work(sink: GraphSink, tenant: str):
        await _seed(sink, tenant)
        first = await reconcile(sink, tenant_id=tenant, null_sentinel=SENTINEL, batch_size=50)
        counts = await _edge_counts(sink, tenant)
        second = await reconcile(sink, tenant_id=tenant, null_sentinel=SENTINEL, batch_size=50)
        report = await verify(sink, tenant_id=tenant)
        return first, counts, second, await _edge_counts(sink, tenant), report

    first, counts, second, counts_after, report = _with_sink(work)

    assert first.duplicates_removed >= 1
    assert counts == {
        "BELONGS_TO": 1,
        "MANAGES": 3,
        "INVESTED_IN": 1,
        "HAS_SUBSCRIPTION": 2,
        "HAS_NAV": 1,
        "INTEREST": 1,
    }
    assert all(created == 0 for created in second.edges.values())
    assert second.duplicates_removed == 0
    assert counts_after == counts
    assert report.node_counts["UserFund"] == 2


def test_read_session_rejects_writes():
    async def work(sink: GraphSink, tenant: str):
        with pytest.raises(Neo4jError):
            await sink.run_read("CREATE (n:Tenant {id: $id})", {"id": tenant})
        result = await sink.run_read("MATCH (n:Tenant {id: $id}) RETURN count(n) AS n", {"id": tenant})
        return result.records[0]["n"]

    assert _with_sink(work) == 0
