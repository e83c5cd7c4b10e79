from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

# Make `backend/` importable regardless of pytest import mode.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from fundgraph.core.db import RowSource  # noqa: E402
from fundgraph.domain.assistant.dependencies import get_chat_client, get_graph_sink, get_row_source  # noqa: E402
from fundgraph.main import create_app  # noqa: E402

from fakes import FakeChat, InMemoryGraph  # noqa: E402

SCHEMA_DDL = (
    "CREATE TABLE tenants (id TEXT PRIMARY KEY, name TEXT, created_at TEXT, updated_at TEXT)",
    "CREATE TABLE users (id TEXT PRIMARY KEY, tenant_id TEXT, username TEXT, email TEXT, first_name TEXT,"
    " last_name TEXT, password_hash TEXT, email_confirmed INTEGER, created_at TEXT, updated_at TEXT)",
    "CREATE TABLE user_entities (id TEXT PRIMARY KEY, tenant_id TEXT, investment_entity TEXT, entity_allias TEXT,"
    " created_at TEXT, updated_at TEXT)",
    "CREATE TABLE user_funds (id TEXT PRIMARY KEY, tenant_id TEXT, fund_name TEXT, fund_name_allias TEXT,"
    " investment_type TEXT, management_fee TEXT, favorite TEXT, created_at TEXT, updated_at TEXT)",
    "CREATE TABLE subscriptions (id TEXT PRIMARY KEY, tenant_id TEXT, fund_name TEXT, investment_entity TEXT,"
    " as_of_date TEXT, commitment_amount TEXT, created_at TEXT, updated_at TEXT)",
    "CREATE TABLE navs (id TEXT PRIMARY KEY, tenant_id TEXT, fund_name TEXT, investment_entity TEXT,"
    " as_of_date TEXT, nav TEXT, created_at TEXT, updated_at TEXT)",
    "CREATE TABLE movements (id TEXT PRIMARY KEY, tenant_id TEXT, fund_name TEXT, investment_entity TEXT,"
    " as_of_date TEXT, movement_type TEXT, transaction_amount TEXT, amount TEXT, created_at TEXT, updated_at TEXT)",
    "CREATE TABLE transactions (id TEXT PRIMARY KEY, tenant_id TEXT, fund_name TEXT, investment_entity TEXT,"
    " as_of_date TEXT, transaction_type TEXT, transaction_amount TEXT, created_at TEXT, updated_at TEXT)",
)

TS = "2023-01-01T09:00:00"

# Two tenants that reuse the same entity and fund names, one orphaned subscription in t1
# ("Ghost Fund" has no UserFund) and one fund without subscription ("Income Fund").
SEED_ROWS: dict[str, list[dict[str, Any]]] = {
    "tenants": [
        {"id": "t1", "name": "Acme Family Office", "created_at": TS, "updated_at": TS},
        {"id": "t2", "name": "Other Office", "created_at": TS, "updated_at": TS},
    ],
    "users": [
        {"id": "u1", "tenant_id": "t1", "username": "ana", "email": "ana@acme.test", "first_name": "Ana",
         "last_name": None, "password_hash": "secret-hash", "email_confirmed": 1, "created_at": TS, "updated_at": TS},
        {"id": "u2", "tenant_id": "t2", "username": "bo", "email": "bo@other.test", "first_name": "Bo",
         "last_name": "Li", "password_hash": "other-hash", "email_confirmed": 0, "created_at": TS, "updated_at": TS},
    ],
    "user_entities": [
        {"id": "e1", "tenant_id": "t1", "investment_entity": "Acme LLC", "entity_allias": "Acme",
         "created_at": TS, "updated_at": TS},
        {"id": "e2", "tenant_id": "t2", "investment_entity": "Acme LLC", "entity_allias": None,
         "created_at": TS, "updated_at": TS},
        {"id": "e3", "tenant_id": "t1", "investment_entity": "Beta Trust", "entity_allias": None,
         "created_at": TS, "updated_at": TS},
    ],
    "user_funds": [
        {"id": "f1", "tenant_id": "t1", "fund_name": "Growth Fund", "fund_name_allias": "GF",
         "investment_type": "Fund", "management_fee": "2.0", "favorite": "t", "created_at": TS, "updated_at": TS},
        {"id": "f2", "tenant_id": "t1", "fund_name": "Income Fund", "fund_name_allias": None,
         "investment_type": "Fund", "management_fee": None, "favorite": "f", "created_at": TS, "updated_at": TS},
        {"id": "f3", "tenant_id": "t2", "fund_name": "Growth Fund", "fund_name_allias": None,
         "investment_type": "Fund", "management_fee": "1.5", "favorite": None, "created_at": TS, "updated_at": TS},
    ],
    "subscriptions": [
        {"id": "s1", "tenant_id": "t1", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-01-01", "commitment_amount": "100000.00", "created_at": TS, "updated_at": TS},
        {"id": "s2", "tenant_id": "t2", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-01-01", "commitment_amount": "5000.00", "created_at": TS, "updated_at": TS},
        {"id": "s3", "tenant_id": "t1", "fund_name": "Ghost Fund", "investment_entity": "Beta Trust",
         "as_of_date": "2023-01-01", "commitment_amount": "750.00", "created_at": TS, "updated_at": TS},
    ],
    "navs": [
        {"id": "n1", "tenant_id": "t1", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-01-01", "nav": "100", "created_at": "2023-01-02T08:00:00", "updated_at": "2023-01-02T08:00:00"},
        {"id": "n2", "tenant_id": "t1", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-02-01", "nav": "90", "created_at": "2023-02-02T08:00:00", "updated_at": "2023-02-02T08:00:00"},
        {"id": "n3", "tenant_id": "t1", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-03-01", "nav": "95", "created_at": "2023-03-02T08:00:00", "updated_at": "2023-03-05T08:00:00"},
        {"id": "n4", "tenant_id": "t2", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-01-01", "nav": "50", "created_at": TS, "updated_at": TS},
    ],
    "movements": [
        {"id": "m1", "tenant_id": "t1", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-01-15", "movement_type": "capital_call", "transaction_amount": "50000.00",
         "amount": None, "created_at": TS, "updated_at": TS},
    ],
    "transactions": [
        {"id": "x1", "tenant_id": "t1", "fund_name": "Growth Fund", "investment_entity": "Acme LLC",
         "as_of_date": "2023-02-15", "transaction_type": "distribution", "transaction_amount": "1200.00",
         "created_at": TS, "updated_at": "2023-02-16T10:00:00"},
    ],
}


def _seed(url: str, rows: dict[str, list[dict[str, Any]]]) -> None:
    engine = create_engine(url)
    with engine.begin() as conn:
        for ddl in SCHEMA_DDL:
            conn.execute(text(ddl))
        for table, table_rows in rows.items():
            for row in table_rows:
                cols = ", ".join(row)
                binds = ", ".join(f":{c}" for c in row)
                conn.execute(text(f"INSERT INTO {table} ({cols}) VALUES ({binds})"), row)
    engine.dispose()


@pytest.fixture()
def source_db(tmp_path: Path) -> Path:
    path = tmp_path / "source.db"
    _seed(f"sqlite:///{path}", SEED_ROWS)
    return path


@pytest.fixture()
def row_source(source_db: Path) -> RowSource:
    # NullPool: every asyncio.run() gets fresh connections on its own loop.
    engine = create_async_engine(f"sqlite+aiosqlite:///{source_db}", poolclass=NullPool)
    return RowSource(engine)


@pytest.fixture()
def graph() -> InMemoryGraph:
    return InMemoryGraph()


@pytest.fixture()
def chat() -> FakeChat:
    return FakeChat()


@pytest.fixture()
def client(graph: InMemoryGraph, row_source: RowSource, chat: FakeChat) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_graph_sink] = lambda: graph
    app.dependency_overrides[get_row_source] = lambda: row_source
    app.dependency_overrides[get_chat_client] = lambda: chat
    return TestClient(app)
