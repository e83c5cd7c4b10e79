from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import pytest

from fundgraph.core.db import RowSource
from scripts import migrate_to_graph

from fakes import InMemoryGraph


@pytest.fixture()
def stores(monkeypatch, row_source: RowSource, graph: InMemoryGraph):
    @asynccontextmanager
    async def _open():
        try:
            yield row_source, graph
        finally:
            await graph.close()

    monkeypatch.setattr(migrate_to_graph, "open_stores", _open)
    return row_source, graph


def test_cli_migrates_and_exits_zero(stores, capsys):
    _, graph = stores

    code = migrate_to_graph.main(["--batch-size", "2"])

    assert code == 0
    out = capsys.readouterr().out
    assert "GRAPH_MIGRATION" in out
    assert "nodes=16 edges=19" in out
    assert graph.closed is True


def test_cli_tenant_and_skip_schema(stores, capsys):
    _, graph = stores

    code = migrate_to_graph.main(["--tenant-id", "t2", "--skip-schema"])

    assert code == 0
    assert graph.schema_statements == []
    assert set(graph.nodes["Tenant"]) == {"t2"}
    assert "tenant_id=t2" in capsys.readouterr().out


def test_cli_unknown_tenant_exits_one(stores):
    assert migrate_to_graph.main(["--tenant-id", "missing"]) == 1


def test_cli_graph_unreachable_exits_one(stores):
    _, graph = stores
    graph.available = False

    assert migrate_to_graph.main([]) == 1
    assert graph.statements == []


def test_cli_invalid_batch_size_exits_one(stores):
    assert migrate_to_graph.main(["--batch-size", "0"]) == 1


def test_cli_check_connections(stores, capsys):
    _, graph = stores

    assert migrate_to_graph.main(["--check-connections"]) == 0

    out = capsys.readouterr().out
    assert "STORES_OK" in out
    assert "navs" in out
    assert graph.statements == []


def test_cli_verify_only(stores, capsys):
    _, graph = stores
    graph.nodes["Tenant"]["t1"] = {"id": "t1"}

    assert migrate_to_graph.main(["--verify-only"]) == 0

    assert "node Tenant" in capsys.readouterr().out


class _Handle:
    def __init__(self, fail_on_close: bool = False):
        self.closed = False
        self.fail_on_close = fail_on_close

    async def close(self) -> None:
        self.closed = True
        if self.fail_on_close:
            raise RuntimeError("close failed")


def _patch_factories(monkeypatch, source, sink_factory) -> None:
    monkeypatch.setattr(migrate_to_graph.RowSource, "from_url", lambda *a, **k: source)
    monkeypatch.setattr(migrate_to_graph.GraphSink, "from_settings", sink_factory)


def test_source_is_closed_when_graph_driver_cannot_be_built(monkeypatch):
    source = _Handle()

    def _bad_uri(*args, **kwargs):
        raise ValueError("bad neo4j uri")

    _patch_factories(monkeypatch, source, _bad_uri)

    assert migrate_to_graph.main([]) == 1
    assert source.closed is True


def test_every_store_is_closed_when_one_close_fails(monkeypatch):
    source, sink = _Handle(), _Handle(fail_on_close=True)
    _patch_factories(monkeypatch, source, lambda *a, **k: sink)

    async def _use():
        async with migrate_to_graph.open_stores() as opened:
            assert opened == (source, sink)

    with pytest.raises(RuntimeError):
        asyncio.run(_use())
    assert sink.closed is True
    assert source.closed is True
