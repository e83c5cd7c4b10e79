from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class GraphQueryRequest(BaseModel):
    question: str = Field(min_length=1, max_length=4000)
    tenant_id: str | None = Field(default=None, max_length=200)
    explain: bool = False


class GraphQueryResult(BaseModel):
    success: bool
    question: str
    query: str | None = None
    results: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None
    repaired: bool = False
    explanation: str | None = None
    timings: dict[str, float] = Field(default_factory=dict)
