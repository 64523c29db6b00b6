# leadsearch/search/query.py
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .params import (
    ScoringCriteria,
    SearchParams,
    validate_scoring_criteria,
    validate_search_params,
)

LEADS_TABLE = "leads"

_SELECT_COLUMNS = (
    "id",
    "name",
    "email",
    "industry",
    "company_size",
    "last_engagement_score",
    "created_at",
)

# Searchable text: name + email, english configuration.
_TEXT_MATCH = (
    "to_tsvector('english', COALESCE(name, '') || ' ' || COALESCE(email, '')) "
    "@@ to_tsquery('english', {})"
)

_TERM_RE = re.compile(r"[\w@.\-]+")


@dataclass(frozen=True)
class QueryObject:
    """
    A parameterized SQL statement.

    text uses numbered placeholders ($1, $2, ...); values[i] binds ${i + 1}.
    User input only ever appears in values.
    """

    text: str
    values: list[Any] = field(default_factory=list)


def _bind(values: list[Any], value: Any) -> str:
    """Append value and return its placeholder."""
    values.append(value)
    return f"${len(values)}"


def to_tsquery_terms(raw: str | None) -> str | None:
    """
    Turn a free-text query into an AND-joined to_tsquery expression.

    "sales  director" -> "sales & director". Characters that to_tsquery
    treats as operators (quotes, parentheses, !, |, :, *) split terms instead
    of reaching the parser. Returns None when no searchable term remains.
    """
    if not raw:
        return None
    terms = [t for t in _TERM_RE.findall(raw) if re.search(r"[^\W_]", t)]
    if not terms:
        return None
    return " & ".join(terms)


def _where_clause(params: SearchParams, values: list[Any]) -> str:
    conditions: list[str] = []

    tsquery = to_tsquery_terms(params.query)
    if tsquery is not None:
        conditions.append(_TEXT_MATCH.format(_bind(values, tsquery)))

    if params.industry is not None:
        conditions.append(f"industry = {_bind(values, params.industry)}")

    if params.company_size is not None:
        conditions.append(f"company_size = {_bind(values, params.company_size)}")

    if not conditions:
        return ""
    return "WHERE " + " AND ".join(conditions)


def build_search_query(
    params: SearchParams | Mapping[str, Any] | None,
    criteria: ScoringCriteria | Mapping[str, Any] | None = None,
) -> QueryObject:
    """
    Build the paginated lead search query.

    The select list carries a query-layer "score" column, the sum of the
    criteria boosts each floored at 0, so results can be ordered by score
    without per-row inference. The composite score is attached after fetch
    by the ScoringEngine.

    Raises ValidationError for malformed params or criteria.
    """
    p = validate_search_params(params)
    c = validate_scoring_criteria(criteria)

    values: list[Any] = []
    score_expr = (
        f"GREATEST({_bind(values, c.additional_relevance)}::float8, 0) + "
        f"GREATEST({_bind(values, c.additional_engagement)}::float8, 0) AS score"
    )

    where_sql = _where_clause(p, values)

    # sort_by is a whitelisted column name; id keeps pages stable on ties.
    order_sql = f"ORDER BY {p.sort_by} {p.sort_order.upper()}, id ASC"

    lines = [
        "SELECT " + ", ".join(_SELECT_COLUMNS) + ", " + score_expr,
        f"FROM {LEADS_TABLE}",
    ]
    if where_sql:
        lines.append(where_sql)
    lines.append(order_sql)
    lines.append(f"LIMIT {_bind(values, p.limit)} OFFSET {_bind(values, p.offset)}")

    return QueryObject(text="\n".join(lines), values=values)


def build_count_query(params: SearchParams | Mapping[str, Any] | None) -> QueryObject:
    """Build a COUNT(*) over the same filters as build_search_query()."""
    p = validate_search_params(params)
    values: list[Any] = []
    where_sql = _where_clause(p, values)
    lines = [f"SELECT COUNT(*) AS total FROM {LEADS_TABLE}"]
    if where_sql:
        lines.append(where_sql)
    return QueryObject(text="\n".join(lines), values=values)


__all__ = [
    "LEADS_TABLE",
    "QueryObject",
    "build_count_query",
    "build_search_query",
    "to_tsquery_terms",
]
