from __future__ import annotations

from fastapi import Request

from fundgraph.core.config import settings
from fundgraph.core.db import RowSource
from fundgraph.core.graph import GraphSink
from fundgraph.domain.assistant.services.query_assistant import ChatClient, QueryAssistant


def get_graph_sink(request: Request) -> GraphSink:
    return request.app.state.graph_sink


def get_row_source(request: Request) -> RowSource:
    return request.app.state.row_source


def get_chat_client(request: Request) -> ChatClient | None:
    return getattr(request.app.state, "chat_client", None)


def build_assistant(sink: GraphSink, chat: ChatClient | None) -> QueryAssistant:
    return QueryAssistant(sink, chat, null_sentinel=settings.null_sentinel)
