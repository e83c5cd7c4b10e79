from __future__ import annotations

import argparse
import asyncio
import os
import sys
from collections.abc import AsyncIterator, Sequence
from contextlib import AsyncExitStack, asynccontextmanager

import structlog

# Ensure `backend/` is importable when running as a script.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fundgraph.core.db import RowSource  # noqa: E402
from fundgraph.core.graph import GraphSink  # noqa: E402
from fundgraph.core.logging import configure_logging  # noqa: E402
from fundgraph.domain.migration.services.orchestrator import (  # noqa: E402
    MigrationOptions,
    MigrationOrchestrator,
    MigrationReport,
)
from fundgraph.domain.migration.services.verification import VerificationReport, verify  # noqa: E402
from fundgraph.shared.exceptions import AppError, StoreUnavailable  # noqa: E402

logger = structlog.get_logger("migrate_to_graph")


@asynccontextmanager
async def open_stores() -> AsyncIterator[tuple[RowSource, GraphSink]]:
    # Each handle is closed even when building or closing the other one fails.
    async with AsyncExitStack() as stack:
        source = RowSource.from_url()
        stack.push_async_callback(source.close)
        sink = GraphSink.from_settings()
        stack.push_async_callback(sink.close)
        yield source, sink


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Migrate the investments database into the Neo4j graph (idempotent).")
    p.add_argument("--tenant-id", default=None, help="Migrate a single tenant (default: all tenants)")
    p.add_argument("--limit", type=int, default=None, help="Read at most N rows per source table")
    p.add_argument("--batch-size", type=int, default=None, help="Rows per graph write (default: MIGRATION_BATCH_SIZE)")
    p.add_argument("--skip-schema", action="store_true", help="Do not create constraints and indexes.")
    p.add_argument("--clear", action="store_true", help="Detach-delete the target scope before migrating.")
    p.add_argument("--verify-only", action="store_true", help="Only count nodes, edges and duplicate groups.")
    p.add_argument("--check-connections", action="store_true", help="Test both stores and print source table counts.")
    return p


async def _require_stores(source: RowSource, sink: GraphSink) -> None:
    if not await source.test_connection():
        raise StoreUnavailable("relational source is unreachable")
    if not await sink.test_connection():
        raise StoreUnavailable("graph database is unreachable")


def _print_verification(report: VerificationReport) -> None:
    for label, count in sorted(report.node_counts.items()):
        print(f"  node {label:<14} {count}")
    for rel, count in sorted(report.edge_counts.items()):
        print(f"  edge {rel:<18} {count}")
    if report.duplicate_groups:
        print(f"  duplicate edge groups remaining: {len(report.duplicate_groups)}")


def _print_report(report: MigrationReport) -> None:
    for stage in report.stages:
        print(f"  {stage.stage.value:<14} read={stage.read} written={stage.written} ({stage.seconds:.2f}s)")
    if report.reconciliation is not None:
        cov = report.reconciliation.coverage
        print(
            f"  coverage       subscriptions={cov.total_subscriptions} linked={cov.linked_subscriptions} "
            f"orphaned={cov.orphaned_count} ratio={cov.coverage_ratio:.2%}"
        )
    if report.verification is not None:
        _print_verification(report.verification)
    total_nodes = report.verification.total_nodes if report.verification else 0
    total_edges = report.verification.total_edges if report.verification else 0
    print(
        f"GRAPH_MIGRATION run_id={report.run_id} tenant_id={report.tenant_id or 'all'} "
        f"nodes={total_nodes} edges={total_edges}"
    )


async def _run(args: argparse.Namespace) -> int:
    async with open_stores() as (source, sink):
        await _require_stores(source, sink)

        if args.check_connections:
            counts = await source.get_table_counts()
            for table, count in counts.items():
                print(f"  {table:<14} {count}")
            print("STORES_OK")
            return 0

        if args.verify_only:
            _print_verification(await verify(sink, tenant_id=args.tenant_id))
            return 0

        options = MigrationOptions.from_settings(
            tenant_id=args.tenant_id,
            limit=args.limit,
            batch_size=args.batch_size,
            skip_schema=args.skip_schema,
            clear=args.clear,
        )
        report = await MigrationOrchestrator(source, sink, options).run()
        _print_report(report)
        return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    configure_logging("console")
    try:
        return asyncio.run(_run(args))
    except AppError as exc:
        logger.error("migration.failed", error=str(exc), error_type=type(exc).__name__)
        return 1
    except Exception:
        logger.exception("migration.crashed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
