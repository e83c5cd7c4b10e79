from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from fundgraph.core.graph import GraphSink
from fundgraph.domain.migration import cypher
from fundgraph.shared.enums import NodeLabel
from fundgraph.shared.utils import batched

logger = structlog.get_logger(__name__)


async def upsert_nodes(
    sink: GraphSink,
    label: NodeLabel,
    rows: Sequence[dict[str, Any]],
    *,
    batch_size: int,
) -> int:
    """Merge nodes by ``id`` and overwrite their properties. Returns the number of rows written."""
    query = cypher.upsert_nodes_query(label)
    written = 0
    for batch in batched(rows, batch_size):
        result = await sink.run(query, {"rows": list(batch)})
        written += int(result.records[0]["written"]) if result.records else 0
        logger.debug("nodes.batch_written", label=label.value, batch=len(batch), total=written)
    logger.info("nodes.upserted", label=label.value, rows=len(rows), written=written)
    return written


async def clear_scope(sink: GraphSink, *, tenant_id: str | None = None) -> int:
    result = await sink.run(cypher.CLEAR_SCOPE, {"tenant_id": tenant_id})
    deleted = int(result.records[0]["deleted"]) if result.records else 0
    logger.warning("nodes.cleared", tenant_id=tenant_id, deleted=deleted)
    return deleted
