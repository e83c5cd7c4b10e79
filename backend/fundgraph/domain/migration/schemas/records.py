from __future__ import annotations

import datetime as dt
from typing import Annotated, Any, ClassVar

from pydantic import AfterValidator, AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field

from fundgraph.shared.enums import NodeLabel


def _stringify(value: Any) -> str | None:
    # Decimal amounts keep their exact text form.
    if value is None or isinstance(value, str):
        return value
    return str(value)


_TRUE = {"true", "t", "yes", "y", "1"}
_FALSE = {"false", "f", "no", "n", "0"}


def _coerce_flag(value: Any) -> bool | None:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return bool(value)
    raw = str(value).strip().lower()
    if raw == "":
        return None
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"not a boolean flag: {value!r}")


def _coerce_date(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10 and value[10] in ("T", " "):
        return value[:10]
    return value


def _as_utc(value: Any) -> Any:
    if isinstance(value, dt.datetime) and value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


SourceId = Annotated[str, BeforeValidator(_stringify)]
Text = Annotated[str | None, BeforeValidator(_stringify)]
Flag = Annotated[bool | None, BeforeValidator(_coerce_flag)]
ObservationDate = Annotated[dt.date, BeforeValidator(_coerce_date)]
Timestamp = Annotated[dt.datetime | None, AfterValidator(_as_utc)]


class SourceRecord(BaseModel):
    """One validated row from the relational store, ready to become a node."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    label: ClassVar[NodeLabel]
    table: ClassVar[str]

    id: SourceId
    created_at: Timestamp = None
    updated_at: Timestamp = None

    def to_properties(self) -> dict[str, Any]:
        return self.model_dump()


class TenantRecord(SourceRecord):
    label = NodeLabel.TENANT
    table = "tenants"

    name: Text = None


class UserRecord(SourceRecord):
    # Credential material (password hash, security stamps, MFA codes) is never copied into the graph.
    label = NodeLabel.USER
    table = "users"

    tenant_id: Text = None
    username: Text = None
    normalized_username: Text = None
    email: Text = None
    normalized_email: Text = None
    email_confirmed: Flag = None
    phone_number: Text = None
    phone_number_confirmed: Flag = None
    two_factor_enabled: Flag = None
    lockout_end: Timestamp = None
    lockout_enabled: Flag = None
    access_failed_count: int | None = None
    is_mfa_enabled: Flag = None
    first_name: Text = None
    last_name: Text = None
    call_notifications: Flag = None
    distribution_notifications: Flag = None
    statement_notifications: Flag = None
    new_investment_notifications: Flag = None
    new_opportunity_notifications: Flag = None
    pipeline_notifications: Flag = None
    forwarding_email: Text = None
    plaid_consent: Flag = None
    plaid_consent_date: Timestamp = None


class UserEntityRecord(SourceRecord):
    label = NodeLabel.USER_ENTITY
    table = "user_entities"

    tenant_id: Text = None
    investment_entity: Text = None
    entity_alias: Text = Field(default=None, validation_alias=AliasChoices("entity_alias", "entity_allias"))


class UserFundRecord(SourceRecord):
    label = NodeLabel.USER_FUND
    table = "user_funds"

    tenant_id: Text = None
    fund_name: Text = None
    fund_name_alias: Text = Field(default=None, validation_alias=AliasChoices("fund_name_alias", "fund_name_allias"))

    # Manager / vehicle
    managed_vehicle: Text = None
    investment_manager_name: Text = None
    general_partner: Text = None
    series_fund: Text = None
    fund_series_name: Text = None
    fund_series_number: Text = None
    investment_summary: Text = None
    gics_sector: Text = None
    geography: Text = None
    esg_mandate: Text = None
    country: Text = None
    side_letter: Text = None
    blocker: Text = None
    auditor: Text = None
    legal: Text = None
    co_investments: Text = None
    key_persons: Text = None
    eligible_investors: Text = None
    inception_year: Text = None

    # Liquidity
    liquidity: Text = None
    lockup_period_flag: Flag = None
    lockup_period_duration: Text = None
    withdrawal_terms: Text = None
    early_withdrawal_fee_flag: Flag = None
    early_withdrawal_fee: Text = None

    # Classification
    investment_type: Text = None
    investment_subtype_fund: Text = None
    investment_subtype_spv: Text = None
    investment_subtype_direct: Text = None
    investment_subtype_other: Text = None
    fund_type: Text = None
    direct_type: Text = None

    # Term
    investment_period: Text = None
    investment_extensions_flag: Flag = None
    investment_extensions: Text = None
    perpetual_flag: Flag = None
    fund_term: Text = None
    term_extensions_flag: Flag = None
    term_extensions: Text = None
    harvest_or_term: Text = None

    # Fees
    management_fee_flag: Flag = None
    management_fee_breaks: Text = None
    management_fee: Text = None
    management_fee_on: Text = None
    management_fee_change_flag: Flag = None
    management_fee_change_to: Text = None
    management_fee_change_on: Text = None
    management_fee_change_after: Text = None
    carry_fee_flag: Flag = None
    carry_fee: Text = None
    carry_ratchet_flag: Flag = None
    ratcheted_carry_fee: Text = None
    ratcheted_carry_fee_when: Text = None
    preferred_return_flag: Flag = None
    preferred_return: Text = None
    catch_up_provision: Text = None
    high_water_mark: Text = None
    capital_recycling: Text = None
    leverage: Text = None
    investment_minimum: Text = None
    gp_commitment_flag: Flag = None
    gp_commitment: Text = None
    gp_commitment_amount: Text = None
    direct_investment_name: Text = None

    # Pipeline
    favorite: Flag = None
    stage: Text = None
    dd_call: Text = None
    legal_and_gov_doc: Text = None
    sub_doc_received: Text = None
    pass_reason: Text = None
    pass_explanation: Text = None
    stage_last_updated: Timestamp = None
    investment_notes: Text = None


class SubscriptionRecord(SourceRecord):
    label = NodeLabel.SUBSCRIPTION
    table = "subscriptions"

    tenant_id: Text = None
    fund_name: Text = None
    investment_entity: Text = None
    as_of_date: ObservationDate | None = None
    # Kept as text: exact decimal, cast at query time.
    commitment_amount: Text = None


class ObservationRow(BaseModel):
    """Common shape of a dated row folded into a consolidated time series."""

    model_config = ConfigDict(extra="ignore")

    # NULL keys group under the sentinel; a NULL date leaves nothing to key the value by.
    id: SourceId | None = None
    tenant_id: Text = None
    fund_name: Text = None
    investment_entity: Text = None
    as_of_date: ObservationDate | None = None
    created_at: Timestamp = None
    updated_at: Timestamp = None


class NavRow(ObservationRow):
    table: ClassVar[str] = "navs"

    nav: Text = None


class MovementRow(ObservationRow):
    table: ClassVar[str] = "movements"

    movement_type: Text = None
    transaction_amount: Text = None
    amount: Text = None


class TransactionRow(ObservationRow):
    table: ClassVar[str] = "transactions"

    transaction_type: Text = None
    transaction_amount: Text = None


NODE_RECORDS: tuple[type[SourceRecord], ...] = (
    TenantRecord,
    UserRecord,
    UserEntityRecord,
    UserFundRecord,
    SubscriptionRecord,
)
