# leadsearch/search/backend.py
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

import asyncpg

Lead = dict[str, Any]


@dataclass
class SearchResult:
    """
    One page of scored leads.

    Attributes:
        data:
            Lead dicts in query order, each with an int "final_score" in [0, 100].
        page / limit:
            The effective (validated) pagination parameters.
        total:
            len(data) by default. When exact totals are enabled this is the
            full match count from a separate COUNT(*) query.
    """

    data: list[dict[str, Any]]
    page: int
    limit: int
    total: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> SearchResult:
        data = payload.get("data")
        if not isinstance(data, list) or not all(isinstance(row, dict) for row in data):
            raise ValueError("SearchResult payload 'data' must be a list of objects")
        return cls(
            data=data,
            page=int(payload["page"]),
            limit=int(payload["limit"]),
            total=int(payload["total"]),
        )


def _plain_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


def normalize_row(row: Mapping[str, Any]) -> Lead:
    """
    Copy a store row into a plain JSON-friendly dict.

    asyncpg hands back Decimal/datetime/UUID values; converting them up front
    keeps fresh and cached results identical.
    """
    return {str(k): _plain_value(v) for k, v in row.items()}


class RecordStore(Protocol):
    """
    Interface for the relational store that holds leads.

    Higher-level code (LeadSearchService) depends on this protocol instead of
    talking to Postgres directly, so tests can plug in an in-memory stub.
    Safety against injection comes entirely from parameterization by the
    query builder; implementations must bind values, never interpolate them.
    """

    async def query(self, text: str, values: Sequence[Any]) -> list[Mapping[str, Any]]:
        """Execute a parameterized statement and return rows as mappings."""
        ...


class PostgresRecordStore:
    """
    RecordStore backed by PostgreSQL via asyncpg.

    Opens a short-lived connection per query. Connection pooling, if needed,
    belongs to the deployment (e.g. pgbouncer) rather than here. asyncpg
    errors propagate unchanged; the service layer wraps them.
    """

    def __init__(self, dsn: str, *, connect_timeout: float = 10.0) -> None:
        self._dsn = dsn
        self._connect_timeout = connect_timeout

    @property
    def dsn(self) -> str:
        return self._dsn

    async def query(self, text: str, values: Sequence[Any]) -> list[Mapping[str, Any]]:
        conn = await asyncpg.connect(self._dsn, timeout=self._connect_timeout)
        try:
            records = await conn.fetch(text, *values)
        finally:
            await conn.close()
        return [dict(r) for r in records]


__all__ = [
    "Lead",
    "SearchResult",
    "normalize_row",
    "RecordStore",
    "PostgresRecordStore",
]
