from __future__ import annotations

from enum import Enum


class Env(str, Enum):
    dev = "dev"
    prod = "prod"
    test = "test"


class NodeLabel(str, Enum):
    TENANT = "Tenant"
    USER = "User"
    USER_ENTITY = "UserEntity"
    USER_FUND = "UserFund"
    SUBSCRIPTION = "Subscription"
    NAV = "NAV"
    MOVEMENTS = "Movements"


class RelType(str, Enum):
    BELONGS_TO = "BELONGS_TO"
    MANAGES = "MANAGES"
    INVESTED_IN = "INVESTED_IN"
    HAS_SUBSCRIPTION = "HAS_SUBSCRIPTION"
    HAS_NAV = "HAS_NAV"
    HAS_MOVEMENTS = "HAS_MOVEMENTS"
    INTEREST = "INTEREST"


class SeriesKind(str, Enum):
    NAV = "nav"
    MOVEMENTS = "movements"


class ObservationSource(str, Enum):
    NAVS = "navs"
    MOVEMENTS = "movements"
    TRANSACTIONS = "transactions"


class MigrationStage(str, Enum):
    SCHEMA = "schema"
    TENANTS = "tenants"
    USERS = "users"
    USER_ENTITIES = "user_entities"
    USER_FUNDS = "user_funds"
    SUBSCRIPTIONS = "subscriptions"
    TIME_SERIES = "time_series"
    RELATIONSHIPS = "relationships"
    VERIFICATION = "verification"
