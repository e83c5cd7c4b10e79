from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from fundgraph.core.graph import GraphSink
from fundgraph.domain.migration import cypher

logger = structlog.get_logger(__name__)


@dataclass
class VerificationReport:
    node_counts: dict[str, int] = field(default_factory=dict)
    edge_counts: dict[str, int] = field(default_factory=dict)
    duplicate_groups: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total_nodes(self) -> int:
        return sum(self.node_counts.values())

    @property
    def total_edges(self) -> int:
        return sum(self.edge_counts.values())


async def verify(sink: GraphSink, *, tenant_id: str | None = None) -> VerificationReport:
    """
    Count what landed in the graph. Advisory only: nothing here fails the run.

    Node counts are tenant-scoped when ``tenant_id`` is given; edge counts and
    duplicate groups always cover the whole graph.
    """
    report = VerificationReport()

    nodes = await sink.run(cypher.COUNT_NODES_BY_LABEL, {"tenant_id": tenant_id})
    report.node_counts = {r["label"]: int(r["count"]) for r in nodes.records}

    edges = await sink.run(cypher.COUNT_EDGES_BY_TYPE)
    report.edge_counts = {r["type"]: int(r["count"]) for r in edges.records}

    dups = await sink.run(cypher.DUPLICATE_EDGE_GROUPS)
    report.duplicate_groups = list(dups.records)

    logger.info(
        "verify.counts",
        tenant_id=tenant_id,
        nodes=report.node_counts,
        edges=report.edge_counts,
        total_nodes=report.total_nodes,
        total_edges=report.total_edges,
    )
    if report.duplicate_groups:
        logger.warning("verify.duplicate_edges_remaining", groups=report.duplicate_groups)
    return report
