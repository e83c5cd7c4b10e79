"""
Relationship reconciliation.

Edges are derived from natural-key joins that no foreign key enforces. The join keys
of every node in scope are read back from the graph, matched here, and the resulting
(source id, target id) pairs are written with ``MERGE`` so that each
(source, type, target) exists at most once.

Pass order:
    1. User -BELONGS_TO-> Tenant
    2. Tenant -MANAGES-> UserEntity, Tenant -MANAGES-> UserFund
    3. UserEntity -INVESTED_IN-> UserFund (through a Subscription)
    4. UserFund -HAS_SUBSCRIPTION-> Subscription
    5. UserEntity -HAS_SUBSCRIPTION-> Subscription
    6. Subscription -HAS_NAV-> NAV, Subscription -HAS_MOVEMENTS-> Movements
    7. Tenant -INTEREST-> UserFund for funds without a HAS_SUBSCRIPTION edge

Pass 7 reads HAS_SUBSCRIPTION back from the graph after passes 4-5 have been written.
A duplicate-repair pass runs last for graphs written by older, non-idempotent loaders.
"""
from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from fundgraph.core.graph import GraphSink
from fundgraph.domain.migration import cypher
from fundgraph.shared.enums import NodeLabel, RelType
from fundgraph.shared.utils import batched, is_present

logger = structlog.get_logger(__name__)

Pair = tuple[str, str]

ORPHAN_SAMPLE_SIZE = 5


@dataclass(frozen=True)
class EdgeSpec:
    rel: RelType
    source: NodeLabel
    target: NodeLabel

    @property
    def name(self) -> str:
        return f"{self.source.value}-{self.rel.value}->{self.target.value}"


BELONGS_TO = EdgeSpec(RelType.BELONGS_TO, NodeLabel.USER, NodeLabel.TENANT)
MANAGES_ENTITY = EdgeSpec(RelType.MANAGES, NodeLabel.TENANT, NodeLabel.USER_ENTITY)
MANAGES_FUND = EdgeSpec(RelType.MANAGES, NodeLabel.TENANT, NodeLabel.USER_FUND)
INVESTED_IN = EdgeSpec(RelType.INVESTED_IN, NodeLabel.USER_ENTITY, NodeLabel.USER_FUND)
FUND_SUBSCRIPTION = EdgeSpec(RelType.HAS_SUBSCRIPTION, NodeLabel.USER_FUND, NodeLabel.SUBSCRIPTION)
ENTITY_SUBSCRIPTION = EdgeSpec(RelType.HAS_SUBSCRIPTION, NodeLabel.USER_ENTITY, NodeLabel.SUBSCRIPTION)
HAS_NAV = EdgeSpec(RelType.HAS_NAV, NodeLabel.SUBSCRIPTION, NodeLabel.NAV)
HAS_MOVEMENTS = EdgeSpec(RelType.HAS_MOVEMENTS, NodeLabel.SUBSCRIPTION, NodeLabel.MOVEMENTS)
INTEREST = EdgeSpec(RelType.INTEREST, NodeLabel.TENANT, NodeLabel.USER_FUND)

EDGE_SPECS: tuple[EdgeSpec, ...] = (
    BELONGS_TO,
    MANAGES_ENTITY,
    MANAGES_FUND,
    INVESTED_IN,
    FUND_SUBSCRIPTION,
    ENTITY_SUBSCRIPTION,
    HAS_NAV,
    HAS_MOVEMENTS,
    INTEREST,
)

JOIN_LABELS: tuple[NodeLabel, ...] = (
    NodeLabel.TENANT,
    NodeLabel.USER,
    NodeLabel.USER_ENTITY,
    NodeLabel.USER_FUND,
    NodeLabel.SUBSCRIPTION,
    NodeLabel.NAV,
    NodeLabel.MOVEMENTS,
)


@dataclass(frozen=True)
class NodeKeys:
    """The join keys of one graph node. Absent keys (null or the sentinel) are ``None``."""

    id: str
    tenant_id: str | None
    fund_name: str | None = None
    investment_entity: str | None = None

    @classmethod
    def from_record(cls, record: dict[str, Any], *, null_sentinel: str) -> NodeKeys:
        def _key(name: str) -> str | None:
            value = record.get(name)
            return value if is_present(value, null_sentinel=null_sentinel) else None

        return cls(
            id=record["id"],
            tenant_id=_key("tenant_id"),
            fund_name=_key("fund_name"),
            investment_entity=_key("investment_entity"),
        )

    @property
    def triple(self) -> tuple[str, str, str] | None:
        if self.tenant_id is None or self.fund_name is None or self.investment_entity is None:
            return None
        return (self.tenant_id, self.fund_name, self.investment_entity)


@dataclass
class GraphSnapshot:
    nodes: dict[NodeLabel, list[NodeKeys]] = field(default_factory=dict)

    def of(self, label: NodeLabel) -> list[NodeKeys]:
        return self.nodes.get(label, [])


@dataclass(frozen=True)
class OrphanedSubscription:
    id: str
    tenant_id: str | None
    fund_name: str | None
    investment_entity: str | None
    missing: str


@dataclass
class CoverageReport:
    total_subscriptions: int = 0
    linked_subscriptions: int = 0
    orphaned: list[OrphanedSubscription] = field(default_factory=list)
    # Subscriptions whose fund name matches more than one fund in the tenant.
    ambiguous_fund_matches: int = 0

    @property
    def orphaned_count(self) -> int:
        return len(self.orphaned)

    @property
    def coverage_ratio(self) -> float:
        if self.total_subscriptions == 0:
            return 1.0
        return self.linked_subscriptions / self.total_subscriptions

    def as_dict(self) -> dict[str, Any]:
        return {
            "total_subscriptions": self.total_subscriptions,
            "linked_subscriptions": self.linked_subscriptions,
            "orphaned_subscriptions": self.orphaned_count,
            "coverage_ratio": round(self.coverage_ratio, 4),
            "ambiguous_fund_matches": self.ambiguous_fund_matches,
        }


@dataclass
class ReconciliationReport:
    edges: dict[str, int] = field(default_factory=dict)
    stale_interest_removed: int = 0
    duplicates_removed: int = 0
    coverage: CoverageReport = field(default_factory=CoverageReport)


def _index(nodes: Iterable[NodeKeys], key_fn: Callable[[NodeKeys], Hashable | None]) -> dict[Any, list[NodeKeys]]:
    index: dict[Any, list[NodeKeys]] = {}
    for node in nodes:
        key = key_fn(node)
        if key is None:
            continue
        index.setdefault(key, []).append(node)
    return index


def _unique(pairs: Iterable[Pair]) -> list[Pair]:
    return list(dict.fromkeys(pairs))


def _tenant_key(node: NodeKeys) -> str | None:
    return node.tenant_id


def _fund_key(node: NodeKeys) -> tuple[str, str] | None:
    if node.tenant_id is None or node.fund_name is None:
        return None
    return (node.tenant_id, node.fund_name)


def _entity_key(node: NodeKeys) -> tuple[str, str] | None:
    if node.tenant_id is None or node.investment_entity is None:
        return None
    return (node.tenant_id, node.investment_entity)


# ---------------------------------------------------------------------------
# Pair derivation (pure)
# ---------------------------------------------------------------------------


def derive_tenant_edges(children: Sequence[NodeKeys], tenants: Sequence[NodeKeys], *, child_is_source: bool) -> list[Pair]:
    """Join children to their tenant on ``tenant_id``. Children of unknown tenants get no edge."""
    tenant_ids = {t.id for t in tenants}
    pairs = []
    dangling = 0
    for child in children:
        if child.tenant_id is None or child.tenant_id not in tenant_ids:
            dangling += 1
            continue
        pairs.append((child.id, child.tenant_id) if child_is_source else (child.tenant_id, child.id))
    if dangling:
        logger.warning("reconcile.dangling_tenant_refs", count=dangling)
    return _unique(pairs)


def derive_invested_in(snapshot: GraphSnapshot) -> tuple[list[Pair], CoverageReport]:
    entities = _index(snapshot.of(NodeLabel.USER_ENTITY), _entity_key)
    funds = _index(snapshot.of(NodeLabel.USER_FUND), _fund_key)

    report = CoverageReport()
    pairs: list[Pair] = []
    for sub in snapshot.of(NodeLabel.SUBSCRIPTION):
        report.total_subscriptions += 1
        matched_entities = entities.get(_entity_key(sub), [])
        matched_funds = funds.get(_fund_key(sub), [])
        if len(matched_funds) > 1:
            report.ambiguous_fund_matches += 1
        if matched_entities and matched_funds:
            report.linked_subscriptions += 1
            pairs.extend((e.id, f.id) for e in matched_entities for f in matched_funds)
            continue
        if not matched_entities and not matched_funds:
            missing = "entity+fund"
        elif not matched_entities:
            missing = "entity"
        else:
            missing = "fund"
        report.orphaned.append(
            OrphanedSubscription(
                id=sub.id,
                tenant_id=sub.tenant_id,
                fund_name=sub.fund_name,
                investment_entity=sub.investment_entity,
                missing=missing,
            )
        )
    return _unique(pairs), report


def derive_fund_subscriptions(snapshot: GraphSnapshot) -> list[Pair]:
    funds = _index(snapshot.of(NodeLabel.USER_FUND), _fund_key)
    return _unique(
        (f.id, sub.id)
        for sub in snapshot.of(NodeLabel.SUBSCRIPTION)
        for f in funds.get(_fund_key(sub), [])
    )


def derive_entity_subscriptions(snapshot: GraphSnapshot) -> list[Pair]:
    entities = _index(snapshot.of(NodeLabel.USER_ENTITY), _entity_key)
    return _unique(
        (e.id, sub.id)
        for sub in snapshot.of(NodeLabel.SUBSCRIPTION)
        for e in entities.get(_entity_key(sub), [])
    )


def derive_series_edges(snapshot: GraphSnapshot, label: NodeLabel) -> list[Pair]:
    series = _index(snapshot.of(label), lambda n: n.triple)
    return _unique(
        (sub.id, s.id)
        for sub in snapshot.of(NodeLabel.SUBSCRIPTION)
        for s in series.get(sub.triple, [])
    )


def derive_interest(snapshot: GraphSnapshot, funds_with_subscription: set[str]) -> list[Pair]:
    tenant_ids = {t.id for t in snapshot.of(NodeLabel.TENANT)}
    return _unique(
        (f.tenant_id, f.id)
        for f in snapshot.of(NodeLabel.USER_FUND)
        if f.id not in funds_with_subscription and f.tenant_id in tenant_ids
    )


# ---------------------------------------------------------------------------
# Graph I/O
# ---------------------------------------------------------------------------


async def load_snapshot(sink: GraphSink, *, tenant_id: str | None, null_sentinel: str) -> GraphSnapshot:
    snapshot = GraphSnapshot()
    for label in JOIN_LABELS:
        result = await sink.run(cypher.join_keys_query(label), {"tenant_id": tenant_id})
        snapshot.nodes[label] = [NodeKeys.from_record(r, null_sentinel=null_sentinel) for r in result.records]
    logger.info(
        "reconcile.snapshot_loaded",
        **{label.value: len(nodes) for label, nodes in snapshot.nodes.items()},
    )
    return snapshot


async def merge_edges(sink: GraphSink, spec: EdgeSpec, pairs: Sequence[Pair], *, batch_size: int) -> int:
    """Write pairs with MERGE. Returns the number of edges newly created."""
    query = cypher.merge_edges_query(spec.rel, spec.source, spec.target)
    created = 0
    for batch in batched(pairs, batch_size):
        payload = [{"source_id": s, "target_id": t} for s, t in batch]
        result = await sink.run(query, {"pairs": payload})
        created += int(result.summary.get("counters", {}).get("relationships_created", 0))
    logger.info("reconcile.edges_merged", edge=spec.name, pairs=len(pairs), created=created)
    return created


async def funds_with_subscription(sink: GraphSink, *, tenant_id: str | None) -> set[str]:
    result = await sink.run(cypher.FUNDS_WITH_SUBSCRIPTION, {"tenant_id": tenant_id})
    return {r["id"] for r in result.records}


async def remove_stale_interest(sink: GraphSink, fund_ids: Sequence[str]) -> int:
    if not fund_ids:
        return 0
    result = await sink.run(cypher.DELETE_INTEREST_FOR_FUNDS, {"fund_ids": list(fund_ids)})
    removed = int(result.records[0]["removed"]) if result.records else 0
    if removed:
        logger.info("reconcile.stale_interest_removed", removed=removed)
    return removed


async def remove_duplicate_edges(sink: GraphSink) -> int:
    """Keep the first edge of every (source, type, target) group and delete the rest."""
    result = await sink.run(cypher.DELETE_DUPLICATE_EDGES)
    removed = int(result.records[0]["removed"]) if result.records else 0
    if removed:
        logger.warning("reconcile.duplicates_removed", removed=removed)
    else:
        logger.info("reconcile.no_duplicates")
    return removed


def _log_coverage(coverage: CoverageReport) -> None:
    logger.info("reconcile.coverage", **coverage.as_dict())
    if coverage.ambiguous_fund_matches:
        logger.warning("reconcile.ambiguous_fund_names", subscriptions=coverage.ambiguous_fund_matches)
    if coverage.orphaned:
        sample = [
            {"id": o.id, "fund_name": o.fund_name, "investment_entity": o.investment_entity, "missing": o.missing}
            for o in coverage.orphaned[:ORPHAN_SAMPLE_SIZE]
        ]
        logger.warning("reconcile.orphaned_subscriptions", count=coverage.orphaned_count, sample=sample)


async def reconcile(
    sink: GraphSink,
    *,
    tenant_id: str | None = None,
    null_sentinel: str,
    batch_size: int,
) -> ReconciliationReport:
    snapshot = await load_snapshot(sink, tenant_id=tenant_id, null_sentinel=null_sentinel)
    tenants = snapshot.of(NodeLabel.TENANT)
    invested_in, coverage = derive_invested_in(snapshot)

    planned: list[tuple[EdgeSpec, list[Pair]]] = [
        (BELONGS_TO, derive_tenant_edges(snapshot.of(NodeLabel.USER), tenants, child_is_source=True)),
        (MANAGES_ENTITY, derive_tenant_edges(snapshot.of(NodeLabel.USER_ENTITY), tenants, child_is_source=False)),
        (MANAGES_FUND, derive_tenant_edges(snapshot.of(NodeLabel.USER_FUND), tenants, child_is_source=False)),
        (INVESTED_IN, invested_in),
        (FUND_SUBSCRIPTION, derive_fund_subscriptions(snapshot)),
        (ENTITY_SUBSCRIPTION, derive_entity_subscriptions(snapshot)),
        (HAS_NAV, derive_series_edges(snapshot, NodeLabel.NAV)),
        (HAS_MOVEMENTS, derive_series_edges(snapshot, NodeLabel.MOVEMENTS)),
    ]

    report = ReconciliationReport(coverage=coverage)
    for spec, pairs in planned:
        report.edges[spec.name] = await merge_edges(sink, spec, pairs, batch_size=batch_size)

    subscribed = await funds_with_subscription(sink, tenant_id=tenant_id)
    report.stale_interest_removed = await remove_stale_interest(sink, sorted(subscribed))
    report.edges[INTEREST.name] = await merge_edges(
        sink, INTEREST, derive_interest(snapshot, subscribed), batch_size=batch_size
    )

    report.duplicates_removed = await remove_duplicate_edges(sink)
    _log_coverage(coverage)
    return report
