"""
Fold dated NAV / movement / transaction rows into one node per
(tenant_id, fund_name, investment_entity).

Grouping uses exact, case-sensitive equality on the triple. Dates are compared
as ``datetime.date``; the latest observation is the one on the maximum date,
and among several observations on that date the last one seen wins. NULL key
columns group under the null sentinel; rows without an ``as_of_date`` are skipped.
"""
from __future__ import annotations

import datetime as dt
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from fundgraph.domain.migration.schemas.records import MovementRow, NavRow, ObservationRow, TransactionRow
from fundgraph.domain.migration.schemas.timeseries import ConsolidatedSeries, Observation
from fundgraph.shared.enums import ObservationSource, SeriesKind
from fundgraph.shared.utils import short_digest, slugify

logger = structlog.get_logger(__name__)

SeriesKey = tuple[str, str, str]

_ID_PREFIX = {SeriesKind.NAV: "nav", SeriesKind.MOVEMENTS: "movements"}


def series_key(row: ObservationRow, *, null_sentinel: str) -> SeriesKey:
    fund_name, investment_entity, tenant_id = (
        value if value is not None else null_sentinel
        for value in (row.fund_name, row.investment_entity, row.tenant_id)
    )
    return (fund_name, investment_entity, tenant_id)


def series_id(kind: SeriesKind, key: SeriesKey) -> str:
    """
    Deterministic node id for a triple.

    The slugs keep ids readable; the digest over the exact triple keeps two
    triples that slug identically (or live in different tenants) apart.
    """
    fund_name, investment_entity, tenant_id = key
    digest = short_digest(tenant_id, fund_name, investment_entity)
    return f"{_ID_PREFIX[kind]}_{slugify(fund_name)}_{slugify(investment_entity)}_{digest}"


def nav_observation(row: NavRow, *, null_sentinel: str) -> Observation:
    return Observation(
        value=row.nav if row.nav is not None else null_sentinel,
        source=ObservationSource.NAVS,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def movement_observation(row: MovementRow) -> Observation:
    return Observation(
        value=row.transaction_amount or row.amount or "0",
        source=ObservationSource.MOVEMENTS,
        type=row.movement_type,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def transaction_observation(row: TransactionRow) -> Observation:
    return Observation(
        value=row.transaction_amount or "0",
        source=ObservationSource.TRANSACTIONS,
        type=row.transaction_type,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


@dataclass
class _Accumulator:
    latest_date: dt.date
    latest: Observation
    values: dict[dt.date, list[Observation]] = field(default_factory=dict)
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None

    @classmethod
    def start(cls, as_of: dt.date, obs: Observation) -> _Accumulator:
        acc = cls(latest_date=as_of, latest=obs)
        acc.add(as_of, obs)
        return acc

    def add(self, as_of: dt.date, obs: Observation) -> None:
        self.values.setdefault(as_of, []).append(obs)
        if as_of >= self.latest_date:
            self.latest_date = as_of
            self.latest = obs
        if obs.created_at is not None and (self.created_at is None or obs.created_at < self.created_at):
            self.created_at = obs.created_at
        if obs.updated_at is not None and (self.updated_at is None or obs.updated_at > self.updated_at):
            self.updated_at = obs.updated_at


def consolidate(
    observations: Iterable[tuple[ObservationRow, Observation]],
    *,
    kind: SeriesKind,
    null_sentinel: str,
) -> list[ConsolidatedSeries]:
    groups: dict[SeriesKey, _Accumulator] = {}
    for row, obs in observations:
        if row.as_of_date is None:
            logger.warning("consolidation.skipped_row", kind=kind.value, row_id=row.id, reason="as_of_date is NULL")
            continue
        key = series_key(row, null_sentinel=null_sentinel)
        acc = groups.get(key)
        if acc is None:
            groups[key] = _Accumulator.start(row.as_of_date, obs)
        else:
            acc.add(row.as_of_date, obs)

    series: list[ConsolidatedSeries] = []
    for key, acc in groups.items():
        fund_name, investment_entity, tenant_id = key
        if null_sentinel in key:
            logger.warning(
                "consolidation.null_key",
                kind=kind.value,
                fund_name=fund_name,
                investment_entity=investment_entity,
                tenant_id=tenant_id,
            )
        series.append(
            ConsolidatedSeries(
                kind=kind,
                id=series_id(kind, key),
                tenant_id=tenant_id,
                fund_name=fund_name,
                investment_entity=investment_entity,
                values=acc.values,
                latest_date=acc.latest_date,
                latest_value=acc.latest.value,
                latest_type=acc.latest.type if kind == SeriesKind.MOVEMENTS else None,
                created_at=acc.created_at,
                updated_at=acc.updated_at,
            )
        )
    return series


def consolidate_navs(rows: Iterable[NavRow], *, null_sentinel: str) -> list[ConsolidatedSeries]:
    series = consolidate(
        ((row, nav_observation(row, null_sentinel=null_sentinel)) for row in rows),
        kind=SeriesKind.NAV,
        null_sentinel=null_sentinel,
    )
    logger.info("consolidation.navs", series=len(series))
    return series


def consolidate_movements(
    movements: Iterable[MovementRow],
    transactions: Iterable[TransactionRow],
    *,
    null_sentinel: str = "__NULL__",
) -> list[ConsolidatedSeries]:
    """Movements and transactions share one node per triple; ``source`` tells them apart."""

    def _observations() -> Iterable[tuple[ObservationRow, Observation]]:
        for m in movements:
            yield m, movement_observation(m)
        for t in transactions:
            yield t, transaction_observation(t)

    series = consolidate(_observations(), kind=SeriesKind.MOVEMENTS, null_sentinel=null_sentinel)
    logger.info("consolidation.movements", series=len(series))
    return series
