from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from neo4j.exceptions import Neo4jError

from fundgraph.core.graph import GraphSink

logger = structlog.get_logger(__name__)

# (name, statement). All statements are idempotent (IF NOT EXISTS).
SCHEMA_STATEMENTS: tuple[tuple[str, str], ...] = (
    ("tenant_id_unique", "CREATE CONSTRAINT tenant_id_unique IF NOT EXISTS FOR (t:Tenant) REQUIRE t.id IS UNIQUE"),
    ("user_id_unique", "CREATE CONSTRAINT user_id_unique IF NOT EXISTS FOR (u:User) REQUIRE u.id IS UNIQUE"),
    ("user_entity_id_unique", "CREATE CONSTRAINT user_entity_id_unique IF NOT EXISTS FOR (e:UserEntity) REQUIRE e.id IS UNIQUE"),
    (
        "user_entity_tenant_investment_unique",
        "CREATE CONSTRAINT user_entity_tenant_investment_unique IF NOT EXISTS "
        "FOR (e:UserEntity) REQUIRE (e.tenant_id, e.investment_entity) IS UNIQUE",
    ),
    ("user_fund_id_unique", "CREATE CONSTRAINT user_fund_id_unique IF NOT EXISTS FOR (f:UserFund) REQUIRE f.id IS UNIQUE"),
    ("subscription_id_unique", "CREATE CONSTRAINT subscription_id_unique IF NOT EXISTS FOR (s:Subscription) REQUIRE s.id IS UNIQUE"),
    ("nav_id_unique", "CREATE CONSTRAINT nav_id_unique IF NOT EXISTS FOR (n:NAV) REQUIRE n.id IS UNIQUE"),
    ("movements_id_unique", "CREATE CONSTRAINT movements_id_unique IF NOT EXISTS FOR (m:Movements) REQUIRE m.id IS UNIQUE"),
    ("user_tenant_id", "CREATE INDEX user_tenant_id IF NOT EXISTS FOR (u:User) ON (u.tenant_id)"),
    ("user_email", "CREATE INDEX user_email IF NOT EXISTS FOR (u:User) ON (u.email)"),
    ("user_entity_tenant_id", "CREATE INDEX user_entity_tenant_id IF NOT EXISTS FOR (e:UserEntity) ON (e.tenant_id)"),
    ("user_fund_tenant_id", "CREATE INDEX user_fund_tenant_id IF NOT EXISTS FOR (f:UserFund) ON (f.tenant_id)"),
    ("user_fund_name", "CREATE INDEX user_fund_name IF NOT EXISTS FOR (f:UserFund) ON (f.tenant_id, f.fund_name)"),
    ("user_fund_stage", "CREATE INDEX user_fund_stage IF NOT EXISTS FOR (f:UserFund) ON (f.stage)"),
    ("subscription_tenant_id", "CREATE INDEX subscription_tenant_id IF NOT EXISTS FOR (s:Subscription) ON (s.tenant_id)"),
    (
        "subscription_triple",
        "CREATE INDEX subscription_triple IF NOT EXISTS FOR (s:Subscription) ON (s.tenant_id, s.fund_name, s.investment_entity)",
    ),
    ("nav_triple", "CREATE INDEX nav_triple IF NOT EXISTS FOR (n:NAV) ON (n.tenant_id, n.fund_name, n.investment_entity)"),
    (
        "movements_triple",
        "CREATE INDEX movements_triple IF NOT EXISTS FOR (m:Movements) ON (m.tenant_id, m.fund_name, m.investment_entity)",
    ),
    ("nav_latest_date", "CREATE INDEX nav_latest_date IF NOT EXISTS FOR (n:NAV) ON (n.latest_date)"),
    ("movements_latest_date", "CREATE INDEX movements_latest_date IF NOT EXISTS FOR (m:Movements) ON (m.latest_date)"),
)


@dataclass
class SchemaReport:
    applied: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


async def bootstrap_schema(sink: GraphSink) -> SchemaReport:
    """Create constraints and indexes. A failing statement is logged and skipped."""
    report = SchemaReport()
    for name, statement in SCHEMA_STATEMENTS:
        try:
            await sink.run(statement)
        except Neo4jError as exc:
            logger.warning("schema.statement_failed", name=name, error=str(exc))
            report.failed[name] = str(exc)
            continue
        report.applied.append(name)
    logger.info("schema.bootstrapped", applied=len(report.applied), failed=len(report.failed))
    return report
