from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from fundgraph.core.graph import GraphSink
from fundgraph.domain.assistant.dependencies import build_assistant, get_chat_client, get_graph_sink
from fundgraph.domain.assistant.graph_schema import schema_payload
from fundgraph.domain.assistant.schemas import GraphQueryRequest, GraphQueryResult
from fundgraph.domain.assistant.services.query_assistant import ChatClient

router = APIRouter(prefix="/graph", tags=["graph"])


@router.post("/query", response_model=GraphQueryResult)
async def query_graph(
    payload: GraphQueryRequest,
    sink: GraphSink = Depends(get_graph_sink),
    chat: ChatClient | None = Depends(get_chat_client),
) -> GraphQueryResult:
    # Always 200: failures are reported in the body as success=false.
    assistant = build_assistant(sink, chat)
    return await assistant.ask(payload.question, tenant_id=payload.tenant_id, explain=payload.explain)


@router.get("/schema")
def graph_schema() -> dict[str, Any]:
    return schema_payload()
