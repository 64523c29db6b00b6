# leadsearch/search/params.py
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from leadsearch.config import MAX_SEARCH_RESULTS
from leadsearch.exceptions import ValidationError

# Public sort names (snake_case or camelCase) -> leads table column.
# ORDER BY targets cannot be bound as parameters, so only these are allowed.
SORT_COLUMNS: dict[str, str] = {
    "score": "score",
    "name": "name",
    "email": "email",
    "industry": "industry",
    "company_size": "company_size",
    "companySize": "company_size",
    "last_engagement_score": "last_engagement_score",
    "lastEngagementScore": "last_engagement_score",
    "created_at": "created_at",
    "createdAt": "created_at",
}


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class SearchParams(BaseModel):
    """
    Validated, default-filled lead search parameters.

    Attributes:
        query:
            Free-text query matched against lead name and email. Every
            whitespace-separated term must match.
        industry / company_size:
            Optional exact-match filters; omitted means unconstrained.
        page / limit:
            1-based page number and page size (1..MAX_SEARCH_RESULTS).
        sort_by:
            Canonical column name (see SORT_COLUMNS); camelCase input is
            normalized on validation.
        sort_order:
            "asc" or "desc".
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        frozen=True,
        str_strip_whitespace=True,
    )

    query: str | None = Field(default=None, max_length=255, strict=True)
    industry: str | None = Field(default=None, max_length=255, strict=True)
    company_size: str | None = Field(
        default=None, max_length=255, strict=True, alias="companySize"
    )
    page: int = Field(default=1, ge=1, strict=True)
    limit: int = Field(default=20, ge=1, le=MAX_SEARCH_RESULTS, strict=True)
    sort_by: str = Field(default="score", alias="sortBy", strict=True)
    sort_order: Literal["asc", "desc"] = Field(default="desc", alias="sortOrder")

    @field_validator("query", "industry", "company_size", mode="before")
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("sort_by")
    @classmethod
    def _known_sort_column(cls, value: str) -> str:
        column = SORT_COLUMNS.get(value)
        if column is None:
            allowed = ", ".join(sorted(set(SORT_COLUMNS.values())))
            raise ValueError(f"unsupported sort column {value!r} (allowed: {allowed})")
        return column

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class ScoringCriteria(BaseModel):
    """Optional non-negative boosts applied by the query-layer score expression."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid", frozen=True)

    additional_relevance: float = Field(
        default=0.0, alias="additionalRelevance", allow_inf_nan=False
    )
    additional_engagement: float = Field(
        default=0.0, alias="additionalEngagement", allow_inf_nan=False
    )

    @field_validator("additional_relevance", "additional_engagement", mode="before")
    @classmethod
    def _numeric_only(cls, value: Any) -> Any:
        if value is None:
            return 0.0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError("must be a number")
        return value

    def as_prompt_dict(self) -> dict[str, float]:
        return {
            "additionalRelevance": self.additional_relevance,
            "additionalEngagement": self.additional_engagement,
        }


def _to_validation_error(
    err: PydanticValidationError,
    model: type[BaseModel],
    default_field: str,
) -> ValidationError:
    """Report the first error under the field's snake_case name, whichever spelling was sent."""
    errors = err.errors()
    if not errors:
        return ValidationError(default_field, str(err))
    first = errors[0]
    names = {f.alias: name for name, f in model.model_fields.items() if f.alias}
    loc = [
        names.get(part, part) if isinstance(part, str) else part
        for part in first.get("loc") or ()
    ]
    field = ".".join(str(part) for part in loc) or default_field
    return ValidationError(field, first.get("msg", "invalid value"))


def validate_search_params(raw: SearchParams | Mapping[str, Any] | None) -> SearchParams:
    """
    Validate and default-fill raw search parameters.

    Raises ValidationError naming the first offending field.
    """
    if isinstance(raw, SearchParams):
        return raw
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValidationError("params", f"expected a mapping, got {type(raw).__name__}")
    try:
        return SearchParams.model_validate(dict(raw))
    except PydanticValidationError as err:
        raise _to_validation_error(err, SearchParams, "params") from err


def validate_scoring_criteria(
    raw: ScoringCriteria | Mapping[str, Any] | None,
) -> ScoringCriteria:
    """Validate optional scoring criteria; None means all-zero criteria."""
    if isinstance(raw, ScoringCriteria):
        return raw
    if raw is None:
        return ScoringCriteria()
    if not isinstance(raw, Mapping):
        raise ValidationError("criteria", f"expected a mapping, got {type(raw).__name__}")
    try:
        return ScoringCriteria.model_validate(dict(raw))
    except PydanticValidationError as err:
        raise _to_validation_error(err, ScoringCriteria, "criteria") from err


__all__ = [
    "SORT_COLUMNS",
    "SearchParams",
    "ScoringCriteria",
    "validate_search_params",
    "validate_scoring_criteria",
]
