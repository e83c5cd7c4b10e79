"""Description of the migrated graph handed to the language model and served on ``GET /graph/schema``."""
from __future__ import annotations

from typing import Any

from fundgraph.domain.migration.services.reconciliation import EDGE_SPECS
from fundgraph.shared.enums import NodeLabel

NODE_PROPERTIES: dict[NodeLabel, tuple[str, ...]] = {
    NodeLabel.TENANT: ("id", "name", "created_at", "updated_at"),
    NodeLabel.USER: ("id", "tenant_id", "email", "username", "first_name", "last_name", "created_at", "updated_at"),
    NodeLabel.USER_ENTITY: ("id", "tenant_id", "investment_entity", "entity_alias", "created_at", "updated_at"),
    NodeLabel.USER_FUND: (
        "id",
        "tenant_id",
        "fund_name",
        "investment_manager_name",
        "general_partner",
        "investment_type",
        "fund_type",
        "stage",
        "investment_minimum",
        "management_fee",
        "carry_fee",
        "geography",
        "gics_sector",
        "liquidity",
        "investment_summary",
    ),
    NodeLabel.SUBSCRIPTION: ("id", "tenant_id", "fund_name", "investment_entity", "as_of_date", "commitment_amount"),
    NodeLabel.NAV: (
        "id",
        "tenant_id",
        "fund_name",
        "investment_entity",
        "values",
        "latest_value",
        "latest_date",
        "count",
        "created_at",
        "updated_at",
    ),
    NodeLabel.MOVEMENTS: (
        "id",
        "tenant_id",
        "fund_name",
        "investment_entity",
        "values",
        "latest_value",
        "latest_date",
        "latest_type",
        "count",
        "created_at",
        "updated_at",
    ),
}

# Numeric values stored as strings; aggregations over them need toFloat().
STRING_NUMERIC_FIELDS: tuple[str, ...] = (
    "commitment_amount",
    "latest_value",
    "investment_minimum",
    "management_fee",
    "carry_fee",
    "gp_commitment_amount",
    "amount",
    "value",
    "price",
    "cost",
    "total",
    "balance",
)


def schema_payload() -> dict[str, Any]:
    return {
        "nodes": {label.value: list(props) for label, props in NODE_PROPERTIES.items()},
        "relationships": [
            {"from": spec.source.value, "type": spec.rel.value, "to": spec.target.value} for spec in EDGE_SPECS
        ],
        "string_numeric_fields": list(STRING_NUMERIC_FIELDS),
    }


def describe_schema(null_sentinel: str) -> str:
    lines = ["Nodes:"]
    for label, props in NODE_PROPERTIES.items():
        lines.append(f"- {label.value}: {{{', '.join(props)}}}")
    lines.append("")
    lines.append("Relationships:")
    for spec in EDGE_SPECS:
        lines.append(f"- ({spec.source.value})-[:{spec.rel.value}]->({spec.target.value})")
    lines += [
        "",
        "Data notes:",
        f"- Missing values are stored as the string '{null_sentinel}', never as null.",
        "- Amounts and fees are stored as strings: " + ", ".join(STRING_NUMERIC_FIELDS) + ".",
        "  Use toFloat() inside SUM(), AVG(), MIN(), MAX() on these fields.",
        "- NAV.values and Movements.values are JSON strings mapping an ISO date to a list of",
        '  observations {"value", "source", "created_at", "updated_at"} (Movements add "type").',
        "- latest_value / latest_date hold the observation on the most recent date.",
        "- A Tenant has INTEREST in a UserFund only when the fund has no subscription.",
    ]
    return "\n".join(lines)
