from __future__ import annotations

import datetime as dt
import hashlib
import re
import uuid
from collections.abc import Iterator, Mapping, Sequence
from decimal import Decimal
from enum import Enum
from typing import Any, TypeVar

T = TypeVar("T")

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


def slugify(value: str) -> str:
    return _NON_ALNUM.sub("_", value)


def short_digest(*parts: str, length: int = 10) -> str:
    h = hashlib.sha1("\x1f".join(parts).encode("utf-8"))
    return h.hexdigest()[:length]


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("batch size must be >= 1")
    for i in range(0, len(items), size):
        yield items[i : i + size]


def to_graph_value(val: Any, *, null_sentinel: str) -> Any:
    """Convert one Python value into something the Neo4j driver stores as a property."""
    if val is None:
        return null_sentinel
    if isinstance(val, uuid.UUID):
        return str(val)
    if isinstance(val, Decimal):
        # Preserve exact value (avoid float rounding); consumers cast with toFloat().
        return str(val)
    if isinstance(val, Enum):
        return val.value
    if isinstance(val, (dt.date, dt.datetime, str, int, float, bool)):
        return val
    return str(val)


def to_graph_properties(data: Mapping[str, Any], *, null_sentinel: str) -> dict[str, Any]:
    """
    Property map for a node write.

    Nulls are written as the sentinel instead of being omitted so that every node
    of a label carries the same property set.
    """
    return {key: to_graph_value(val, null_sentinel=null_sentinel) for key, val in data.items()}


def is_present(value: Any, *, null_sentinel: str) -> bool:
    return value is not None and value != null_sentinel and value != ""
