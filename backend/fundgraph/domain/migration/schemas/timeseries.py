from __future__ import annotations

import datetime as dt
import json
from typing import Any

from pydantic import BaseModel, ConfigDict

from fundgraph.shared.enums import NodeLabel, ObservationSource, SeriesKind


def _iso(value: dt.datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class Observation(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: str
    source: ObservationSource
    type: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    def to_json(self, *, with_type: bool) -> dict[str, Any]:
        out: dict[str, Any] = {
            "value": self.value,
            "source": self.source.value,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if with_type:
            out["type"] = self.type
        return out


class ConsolidatedSeries(BaseModel):
    """
    One NAV or Movements node: every observation for a
    (tenant_id, fund_name, investment_entity) triple, keyed by date.
    """

    kind: SeriesKind
    id: str
    tenant_id: str
    fund_name: str
    investment_entity: str
    values: dict[dt.date, list[Observation]]
    latest_date: dt.date
    latest_value: str
    latest_type: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @property
    def label(self) -> NodeLabel:
        return NodeLabel.NAV if self.kind == SeriesKind.NAV else NodeLabel.MOVEMENTS

    @property
    def count(self) -> int:
        return len(self.values)

    def values_json(self) -> str:
        with_type = self.kind == SeriesKind.MOVEMENTS
        payload = {
            day.isoformat(): [obs.to_json(with_type=with_type) for obs in observations]
            for day, observations in sorted(self.values.items())
        }
        return json.dumps(payload, sort_keys=True, separators=(",", ":"))

    def to_properties(self) -> dict[str, Any]:
        # Graph properties cannot hold maps, so the series travels as a JSON string.
        props: dict[str, Any] = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "fund_name": self.fund_name,
            "investment_entity": self.investment_entity,
            "values": self.values_json(),
            "latest_value": self.latest_value,
            "latest_date": self.latest_date.isoformat(),
            "count": self.count,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
        if self.kind == SeriesKind.MOVEMENTS:
            props["latest_type"] = self.latest_type
        return props
