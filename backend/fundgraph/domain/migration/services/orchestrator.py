"""
Migration orchestrator.

Stages run strictly in sequence:
    schema -> tenants -> users -> user entities -> user funds -> subscriptions
    -> NAV / Movements consolidation -> relationship reconciliation -> verification

Any exception aborts the run. Every write merges by key, so re-running after a
failure is safe.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any

import structlog

from fundgraph.core.config import settings
from fundgraph.core.db import RowSource
from fundgraph.core.graph import GraphSink
from fundgraph.domain.migration.schemas.records import (
    NODE_RECORDS,
    MovementRow,
    NavRow,
    SourceRecord,
    TenantRecord,
    TransactionRow,
)
from fundgraph.domain.migration.schemas.timeseries import ConsolidatedSeries
from fundgraph.domain.migration.services.consolidation import consolidate_movements, consolidate_navs
from fundgraph.domain.migration.services.nodes import clear_scope, upsert_nodes
from fundgraph.domain.migration.services.reconciliation import ReconciliationReport, reconcile
from fundgraph.domain.migration.services.schema import SchemaReport, bootstrap_schema
from fundgraph.domain.migration.services.verification import VerificationReport, verify
from fundgraph.shared.enums import MigrationStage, NodeLabel
from fundgraph.shared.exceptions import NotFound, ValidationError
from fundgraph.shared.utils import new_run_id, to_graph_properties

logger = structlog.get_logger(__name__)

_OBSERVATION_ORDER = ("fund_name", "investment_entity", "as_of_date", "id")

_RECORD_STAGES: dict[NodeLabel, MigrationStage] = {
    NodeLabel.TENANT: MigrationStage.TENANTS,
    NodeLabel.USER: MigrationStage.USERS,
    NodeLabel.USER_ENTITY: MigrationStage.USER_ENTITIES,
    NodeLabel.USER_FUND: MigrationStage.USER_FUNDS,
    NodeLabel.SUBSCRIPTION: MigrationStage.SUBSCRIPTIONS,
}


@dataclass(frozen=True)
class MigrationOptions:
    tenant_id: str | None = None
    limit: int | None = None
    skip_schema: bool = False
    clear: bool = False
    batch_size: int = 50
    null_sentinel: str = "__NULL__"

    @classmethod
    def from_settings(cls, **overrides: Any) -> MigrationOptions:
        values: dict[str, Any] = {
            "batch_size": settings.migration_batch_size,
            "null_sentinel": settings.null_sentinel,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValidationError("batch_size must be >= 1")
        if self.limit is not None and self.limit < 1:
            raise ValidationError("limit must be >= 1")


@dataclass(frozen=True)
class StageResult:
    stage: MigrationStage
    read: int
    written: int
    seconds: float


@dataclass
class MigrationReport:
    run_id: str
    tenant_id: str | None
    stages: list[StageResult] = field(default_factory=list)
    schema: SchemaReport | None = None
    reconciliation: ReconciliationReport | None = None
    verification: VerificationReport | None = None
    cleared: int = 0

    def stage(self, stage: MigrationStage) -> StageResult | None:
        return next((s for s in self.stages if s.stage == stage), None)


class MigrationOrchestrator:
    """Runs one migration against injected store handles. The caller owns opening and closing them."""

    def __init__(self, source: RowSource, sink: GraphSink, options: MigrationOptions | None = None) -> None:
        self.source = source
        self.sink = sink
        self.options = options or MigrationOptions.from_settings()

    async def run(self) -> MigrationReport:
        opts = self.options
        report = MigrationReport(run_id=new_run_id(), tenant_id=opts.tenant_id)
        structlog.contextvars.bind_contextvars(run_id=report.run_id, tenant_id=opts.tenant_id)
        started = time.perf_counter()
        try:
            logger.info("migration.started", limit=opts.limit, batch_size=opts.batch_size, clear=opts.clear)

            if opts.tenant_id is not None:
                await self._require_tenant(opts.tenant_id)

            if opts.clear:
                report.cleared = await clear_scope(self.sink, tenant_id=opts.tenant_id)

            if not opts.skip_schema:
                t0 = time.perf_counter()
                report.schema = await bootstrap_schema(self.sink)
                report.stages.append(
                    StageResult(MigrationStage.SCHEMA, 0, len(report.schema.applied), time.perf_counter() - t0)
                )

            for record_cls in NODE_RECORDS:
                report.stages.append(await self._migrate_records(record_cls))

            report.stages.append(await self._migrate_time_series())

            t0 = time.perf_counter()
            report.reconciliation = await reconcile(
                self.sink,
                tenant_id=opts.tenant_id,
                null_sentinel=opts.null_sentinel,
                batch_size=opts.batch_size,
            )
            report.stages.append(
                StageResult(
                    MigrationStage.RELATIONSHIPS,
                    0,
                    sum(report.reconciliation.edges.values()),
                    time.perf_counter() - t0,
                )
            )

            t0 = time.perf_counter()
            report.verification = await verify(self.sink, tenant_id=opts.tenant_id)
            report.stages.append(
                StageResult(MigrationStage.VERIFICATION, 0, 0, time.perf_counter() - t0)
            )

            logger.info(
                "migration.completed",
                seconds=round(time.perf_counter() - started, 3),
                stages={s.stage.value: s.written for s in report.stages},
            )
            return report
        finally:
            structlog.contextvars.unbind_contextvars("run_id", "tenant_id")

    async def _require_tenant(self, tenant_id: str) -> None:
        rows = await self.source.fetch_table(TenantRecord.table, tenant_id=tenant_id, limit=1)
        if not rows:
            raise NotFound(f"Tenant {tenant_id} not found in source")

    async def _fetch(self, table: str, *, order_by: tuple[str, ...]) -> list[dict[str, Any]]:
        return await self.source.fetch_table(
            table,
            tenant_id=self.options.tenant_id,
            order_by=order_by,
            limit=self.options.limit,
        )

    async def _migrate_records(self, record_cls: type[SourceRecord]) -> StageResult:
        stage = _RECORD_STAGES[record_cls.label]
        t0 = time.perf_counter()
        rows = await self._fetch(record_cls.table, order_by=("id",))
        records = [record_cls.model_validate(row) for row in rows]
        props = [to_graph_properties(r.to_properties(), null_sentinel=self.options.null_sentinel) for r in records]
        written = await upsert_nodes(self.sink, record_cls.label, props, batch_size=self.options.batch_size)
        result = StageResult(stage, len(rows), written, time.perf_counter() - t0)
        logger.info("migration.stage_done", stage=stage.value, read=result.read, written=result.written)
        return result

    async def _write_series(self, series: list[ConsolidatedSeries]) -> int:
        props = [to_graph_properties(s.to_properties(), null_sentinel=self.options.null_sentinel) for s in series]
        if not props:
            return 0
        return await upsert_nodes(self.sink, series[0].label, props, batch_size=self.options.batch_size)

    async def _migrate_time_series(self) -> StageResult:
        t0 = time.perf_counter()
        navs = [NavRow.model_validate(r) for r in await self._fetch(NavRow.table, order_by=_OBSERVATION_ORDER)]
        movements = [
            MovementRow.model_validate(r) for r in await self._fetch(MovementRow.table, order_by=_OBSERVATION_ORDER)
        ]
        transactions = [
            TransactionRow.model_validate(r)
            for r in await self._fetch(TransactionRow.table, order_by=_OBSERVATION_ORDER)
        ]

        nav_series = consolidate_navs(navs, null_sentinel=self.options.null_sentinel)
        movement_series = consolidate_movements(movements, transactions, null_sentinel=self.options.null_sentinel)
        written = await self._write_series(nav_series) + await self._write_series(movement_series)

        read = len(navs) + len(movements) + len(transactions)
        result = StageResult(MigrationStage.TIME_SERIES, read, written, time.perf_counter() - t0)
        logger.info(
            "migration.stage_done",
            stage=MigrationStage.TIME_SERIES.value,
            read=read,
            nav_nodes=len(nav_series),
            movements_nodes=len(movement_series),
        )
        return result
