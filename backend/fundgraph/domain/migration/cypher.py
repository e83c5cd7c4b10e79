"""
Cypher statements emitted by the migration.

Labels and relationship types are interpolated from the ``NodeLabel`` / ``RelType``
enums only; every value supplied by data travels as a parameter.
"""
from __future__ import annotations

from fundgraph.shared.enums import NodeLabel, RelType


def _tenant_expr(label: NodeLabel) -> str:
    return "n.id" if label == NodeLabel.TENANT else "n.tenant_id"


def upsert_nodes_query(label: NodeLabel) -> str:
    return (
        "UNWIND $rows AS row\n"
        f"MERGE (n:{label.value} {{id: row.id}})\n"
        "SET n += row\n"
        "RETURN count(n) AS written"
    )


def join_keys_query(label: NodeLabel) -> str:
    tenant = _tenant_expr(label)
    return (
        f"MATCH (n:{label.value})\n"
        f"WHERE $tenant_id IS NULL OR {tenant} = $tenant_id\n"
        f"RETURN n.id AS id, {tenant} AS tenant_id, "
        "n.fund_name AS fund_name, n.investment_entity AS investment_entity\n"
        "ORDER BY id"
    )


def merge_edges_query(rel: RelType, source: NodeLabel, target: NodeLabel) -> str:
    # MERGE on the bare pattern: the edge key is (source id, type, target id).
    return (
        "UNWIND $pairs AS pair\n"
        f"MATCH (a:{source.value} {{id: pair.source_id}})\n"
        f"MATCH (b:{target.value} {{id: pair.target_id}})\n"
        f"MERGE (a)-[r:{rel.value}]->(b)\n"
        "ON CREATE SET r.created_at = datetime()\n"
        "RETURN count(r) AS merged"
    )


FUNDS_WITH_SUBSCRIPTION = (
    "MATCH (f:UserFund)-[:HAS_SUBSCRIPTION]->(:Subscription)\n"
    "WHERE $tenant_id IS NULL OR f.tenant_id = $tenant_id\n"
    "RETURN DISTINCT f.id AS id"
)

DELETE_INTEREST_FOR_FUNDS = (
    "UNWIND $fund_ids AS fund_id\n"
    "MATCH (:Tenant)-[r:INTEREST]->(f:UserFund {id: fund_id})\n"
    "DELETE r\n"
    "RETURN count(r) AS removed"
)

DELETE_DUPLICATE_EDGES = (
    "MATCH (a)-[r]->(b)\n"
    "WITH a, b, type(r) AS rel_type, r\n"
    "ORDER BY elementId(r)\n"
    "WITH a, b, rel_type, collect(r) AS rels\n"
    "WHERE size(rels) > 1\n"
    "UNWIND rels[1..] AS dup\n"
    "DELETE dup\n"
    "RETURN count(dup) AS removed"
)

DUPLICATE_EDGE_GROUPS = (
    "MATCH (a)-[r]->(b)\n"
    "WITH a, b, type(r) AS rel_type, count(r) AS rel_count\n"
    "WHERE rel_count > 1\n"
    "RETURN labels(a)[0] AS from_label, rel_type, labels(b)[0] AS to_label, rel_count\n"
    "ORDER BY rel_count DESC\n"
    "LIMIT 10"
)

COUNT_NODES_BY_LABEL = (
    "MATCH (n)\n"
    "WHERE $tenant_id IS NULL OR n.tenant_id = $tenant_id OR (n:Tenant AND n.id = $tenant_id)\n"
    "RETURN labels(n)[0] AS label, count(n) AS count\n"
    "ORDER BY label"
)

COUNT_EDGES_BY_TYPE = (
    "MATCH ()-[r]->()\n"
    "RETURN type(r) AS type, count(r) AS count\n"
    "ORDER BY type"
)

CLEAR_SCOPE = (
    "MATCH (n)\n"
    "WHERE $tenant_id IS NULL OR n.tenant_id = $tenant_id OR (n:Tenant AND n.id = $tenant_id)\n"
    "DETACH DELETE n\n"
    "RETURN count(*) AS deleted"
)
