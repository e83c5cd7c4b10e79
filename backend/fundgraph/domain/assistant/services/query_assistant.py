"""
Natural-language questions over the migrated graph.

A question is translated to Cypher by the language model (or used verbatim when it
already is Cypher), executed, and, when execution fails, repaired once by wrapping
aggregations over string-encoded numbers in ``toFloat`` and retried exactly once.
Failures come back as ``GraphQueryResult(success=False)``; nothing is raised.
"""
from __future__ import annotations

import json
import re
import time
from collections.abc import Mapping
from typing import Any, Protocol

import structlog
from neo4j.exceptions import DriverError, Neo4jError

from fundgraph.core.graph import GraphSink
from fundgraph.domain.assistant.graph_schema import STRING_NUMERIC_FIELDS, describe_schema
from fundgraph.domain.assistant.schemas import GraphQueryResult
from fundgraph.services.azure.openai_client import ChatClientError, ChatResult, strip_code_fences

logger = structlog.get_logger(__name__)

_DIRECT_CYPHER = re.compile(r"^\s*(MATCH|RETURN|WITH)\b", re.IGNORECASE)

EXPLAIN_SAMPLE_SIZE = 5


class ChatClient(Protocol):
    async def generate_answer(self, *, system_prompt: str, user_prompt: str) -> ChatResult: ...


def _aggregation_pattern(field: str) -> re.Pattern[str]:
    # SUM(x.field) but not SUM(toFloat(x.field))
    return re.compile(rf"\b(SUM|AVG|MIN|MAX)\(\s*([A-Za-z_]\w*\.{re.escape(field)})\s*\)", re.IGNORECASE)


_AGGREGATION_PATTERNS = [_aggregation_pattern(f) for f in STRING_NUMERIC_FIELDS]


def repair_aggregations(query: str) -> str:
    repaired = query
    for pattern in _AGGREGATION_PATTERNS:
        repaired = pattern.sub(lambda m: f"{m.group(1)}(toFloat({m.group(2)}))", repaired)
    return repaired


def is_direct_cypher(question: str) -> bool:
    return bool(_DIRECT_CYPHER.match(question))


def to_plain(value: Any) -> Any:
    """Driver temporal types become ISO strings; containers are converted recursively."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Mapping):
        return {str(k): to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    iso_format = getattr(value, "iso_format", None)
    if callable(iso_format):
        return iso_format()
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def build_system_prompt(*, null_sentinel: str, tenant_id: str | None) -> str:
    parts = [
        "You are a Neo4j Cypher expert for an investment-management graph.",
        "Translate the user's question into a single read-only Cypher query.",
        "",
        describe_schema(null_sentinel),
    ]
    if tenant_id:
        parts += ["", f"IMPORTANT: filter every matched node by tenant_id = '{tenant_id}' for data isolation."]
    parts += ["", "Return ONLY the Cypher query, no explanations or markdown formatting."]
    return "\n".join(parts)


def _ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)


class QueryAssistant:
    def __init__(self, sink: GraphSink, chat: ChatClient | None, *, null_sentinel: str = "__NULL__") -> None:
        self._sink = sink
        self._chat = chat
        self._null_sentinel = null_sentinel

    async def generate_cypher(self, question: str, *, tenant_id: str | None = None) -> str:
        if is_direct_cypher(question):
            return question.strip()
        if self._chat is None:
            raise ChatClientError("query translation is not configured")
        result = await self._chat.generate_answer(
            system_prompt=build_system_prompt(null_sentinel=self._null_sentinel, tenant_id=tenant_id),
            user_prompt=question,
        )
        return strip_code_fences(result.output_text)

    async def _execute(self, query: str) -> list[dict[str, Any]]:
        result = await self._sink.run_read(query)
        return [to_plain(r) for r in result.records]

    async def explain(self, question: str, query: str, results: list[dict[str, Any]]) -> str | None:
        if self._chat is None:
            return None
        sample = json.dumps(results[:EXPLAIN_SAMPLE_SIZE], indent=2, default=str)
        suffix = f"\n... (first {EXPLAIN_SAMPLE_SIZE} of {len(results)} results)" if len(results) > EXPLAIN_SAMPLE_SIZE else ""
        answer = await self._chat.generate_answer(
            system_prompt=(
                "You are a portfolio analyst. Answer the question in plain English from the query results. "
                "Use the recorded movement type; never infer it from the sign of an amount. "
                f"Values equal to '{self._null_sentinel}' are missing."
            ),
            user_prompt=f"Question: {question}\nCypher: {query}\nResults ({len(results)}):\n{sample}{suffix}",
        )
        return answer.output_text.strip()

    async def ask(self, question: str, *, tenant_id: str | None = None, explain: bool = False) -> GraphQueryResult:
        started = time.perf_counter()
        timings: dict[str, float] = {}
        out = GraphQueryResult(success=False, question=question)

        try:
            t0 = time.perf_counter()
            out.query = await self.generate_cypher(question, tenant_id=tenant_id)
            timings["generation_ms"] = _ms(t0)
        except ChatClientError as exc:
            logger.warning("assistant.generation_failed", error=str(exc))
            out.error = f"Failed to generate Cypher query: {exc}"
            timings["total_ms"] = _ms(started)
            out.timings = timings
            return out

        t0 = time.perf_counter()
        try:
            out.results = await self._execute(out.query)
        except Neo4jError as exc:
            fixed = repair_aggregations(out.query)
            if fixed == out.query:
                logger.warning("assistant.query_failed", query=out.query, error=str(exc))
                out.error = str(exc)
            else:
                logger.info("assistant.retry_repaired", query=fixed, error=str(exc))
                out.query = fixed
                out.repaired = True
                try:
                    out.results = await self._execute(fixed)
                except (Neo4jError, DriverError) as retry_exc:
                    logger.warning("assistant.retry_failed", query=fixed, error=str(retry_exc))
                    out.error = str(retry_exc)
        except DriverError as exc:
            logger.error("assistant.graph_unavailable", error=str(exc))
            out.error = str(exc)
        timings["execution_ms"] = _ms(t0)

        if out.error is None:
            out.success = True
            if explain:
                t0 = time.perf_counter()
                try:
                    out.explanation = await self.explain(question, out.query, out.results)
                except ChatClientError as exc:
                    logger.warning("assistant.explain_failed", error=str(exc))
                timings["explanation_ms"] = _ms(t0)

        timings["total_ms"] = _ms(started)
        out.timings = timings
        logger.info(
            "assistant.answered",
            success=out.success,
            repaired=out.repaired,
            rows=len(out.results),
            **timings,
        )
        return out
