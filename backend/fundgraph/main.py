from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI

from fundgraph.core.config import settings
from fundgraph.core.db import RowSource
from fundgraph.core.graph import GraphSink
from fundgraph.core.logging import configure_logging
from fundgraph.core.middleware.request_id import RequestIdMiddleware
from fundgraph.domain.assistant.dependencies import get_graph_sink, get_row_source
from fundgraph.domain.assistant.routes import router as graph_router
from fundgraph.services.azure.openai_client import AzureChatClient

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Handles are created here and connect lazily on first use.
    app.state.graph_sink = GraphSink.from_settings()
    app.state.row_source = RowSource.from_url()
    app.state.chat_client = AzureChatClient() if settings.AZURE_OPENAI_ENDPOINT else None
    if app.state.chat_client is None:
        logger.warning("app.chat_client_disabled", reason="AZURE_OPENAI_ENDPOINT not configured")
    try:
        yield
    finally:
        if app.state.chat_client is not None:
            await app.state.chat_client.close()
        await app.state.row_source.close()
        await app.state.graph_sink.close()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="Fund Graph - Backend", version="0.1.0", lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)

    @app.get("/health", tags=["admin"])
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/health/stores", tags=["admin"])
    async def health_stores(
        source: RowSource = Depends(get_row_source),
        sink: GraphSink = Depends(get_graph_sink),
    ) -> dict[str, str]:
        source_ok = await source.test_connection()
        graph_ok = await sink.test_connection()
        return {
            "status": "ok" if source_ok and graph_ok else "degraded",
            "source": "ok" if source_ok else "fail",
            "graph": "ok" if graph_ok else "fail",
        }

    app.include_router(graph_router)
    return app


app = create_app()
