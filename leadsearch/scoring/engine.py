# leadsearch/scoring/engine.py
from __future__ import annotations

import asyncio
import json
import logging
import math
import re
from collections.abc import Mapping, Sequence
from typing import Any

from leadsearch.config import ScoringConfig, ScoringWeights
from leadsearch.exceptions import InferenceError
from leadsearch.search.params import ScoringCriteria, validate_scoring_criteria

from .inference import InferenceClient

log = logging.getLogger(__name__)

SCORE_MIN = 0
SCORE_MAX = 100
FIRMOGRAPHIC_POINTS = 5

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def _field(lead: Mapping[str, Any], name: str, alias: str) -> Any:
    """Read a lead attribute by snake_case name, falling back to its camelCase alias."""
    value = lead.get(name)
    if value is None:
        value = lead.get(alias)
    return value


def _as_number(value: Any) -> float:
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _clamp(value: float, lo: float = SCORE_MIN, hi: float = SCORE_MAX) -> float:
    return max(lo, min(hi, value))


def build_scoring_prompt(lead: Mapping[str, Any], criteria: ScoringCriteria) -> str:
    """Render the inference prompt for a single lead."""
    engagement = _field(lead, "last_engagement_score", "lastEngagementScore")
    return (
        "Please analyze this lead data:\n"
        f"- Name: {lead.get('name') or 'N/A'}\n"
        f"- Email: {lead.get('email') or 'N/A'}\n"
        f"- Industry: {lead.get('industry') or 'N/A'}\n"
        f"- Company Size: {_field(lead, 'company_size', 'companySize') or 'N/A'}\n"
        f"- Last Engagement Score: {engagement if engagement is not None else 0}\n\n"
        "Then, using the following additional scoring criteria:\n"
        f"{json.dumps(criteria.as_prompt_dict(), sort_keys=True)}\n\n"
        "Return a single integer from 0 to 100 that represents the lead quality "
        "or likelihood to convert."
    )


def parse_inference_score(text: str | None) -> int:
    """
    Parse the leading integer of a completion ("70", " 70 points" -> 70).

    Raises InferenceError when the text does not start with an integer.
    """
    match = _LEADING_INT_RE.match(text or "")
    if match is None:
        raise InferenceError(f"non-numeric inference output: {(text or '')[:50]!r}")
    return int(match.group(1))


def compute_final_score(
    base_score: float,
    lead: Mapping[str, Any],
    weights: ScoringWeights,
) -> int:
    """
    Combine the relevance estimate with engagement and firmographic signals.

        final = round(clamp(base * w_relevance
                            + last_engagement_score * w_engagement
                            + (5 * w_firmographic if industry or company_size else 0),
                            0, 100))

    base is used as returned by inference; only the total is clamped.
    Rounding is half-up.
    """
    relevance = _as_number(base_score) * weights.relevance

    engagement = _as_number(_field(lead, "last_engagement_score", "lastEngagementScore"))
    engagement_factor = engagement * weights.engagement

    firmographic_factor = 0.0
    if lead.get("industry") or _field(lead, "company_size", "companySize"):
        firmographic_factor = FIRMOGRAPHIC_POINTS * weights.firmographic

    total = _clamp(relevance + engagement_factor + firmographic_factor)
    return int(math.floor(total + 0.5))


class ScoringEngine:
    """
    Composite 0-100 lead scorer.

    One inference call per lead; inference problems of any kind (errors,
    timeouts, non-integer output) fall back to the configured baseline and
    are never raised. Only cancellation escapes.
    """

    def __init__(
        self,
        inference: InferenceClient,
        *,
        weights: ScoringWeights | None = None,
        baseline: int = 50,
        max_concurrency: int = 8,
        timeout_seconds: float | None = 10.0,
    ) -> None:
        self._inference = inference
        self._weights = weights or ScoringWeights()
        self._baseline = baseline
        self._max_concurrency = max(1, int(max_concurrency))
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, inference: InferenceClient, cfg: ScoringConfig) -> ScoringEngine:
        return cls(
            inference,
            weights=cfg.weights,
            baseline=cfg.baseline,
            max_concurrency=cfg.max_concurrency,
            timeout_seconds=cfg.timeout_seconds,
        )

    @property
    def weights(self) -> ScoringWeights:
        return self._weights

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    async def _relevance(self, lead: Mapping[str, Any], criteria: ScoringCriteria) -> float:
        prompt = build_scoring_prompt(lead, criteria)
        try:
            async with asyncio.timeout(self._timeout_seconds):
                text = await self._inference.infer(prompt)
            return float(parse_inference_score(text))
        except Exception as exc:
            log.warning(
                "Lead inference failed; using baseline score",
                extra={"lead_id": lead.get("id"), "baseline": self._baseline, "exc": str(exc)},
            )
            return float(self._baseline)

    async def score(
        self,
        lead: Mapping[str, Any],
        criteria: ScoringCriteria | Mapping[str, Any] | None = None,
    ) -> int:
        """Return the composite score for one lead, an int in [0, 100]."""
        c = validate_scoring_criteria(criteria)
        base = await self._relevance(lead, c)
        return compute_final_score(base, lead, self._weights)

    async def score_many(
        self,
        leads: Sequence[Mapping[str, Any]],
        criteria: ScoringCriteria | Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Score a page of leads with at most max_concurrency inference calls in
        flight, returning copies of the leads with "final_score" attached.

        Output order matches input order. If the caller is cancelled, every
        pending scoring task is cancelled with it.
        """
        c = validate_scoring_criteria(criteria)
        if not leads:
            return []

        sem = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(lead: Mapping[str, Any]) -> int:
            async with sem:
                return await self.score(lead, c)

        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(_bounded(lead)) for lead in leads]

        return [
            {**lead, "final_score": task.result()}
            for lead, task in zip(leads, tasks, strict=True)
        ]


__all__ = [
    "ScoringEngine",
    "build_scoring_prompt",
    "compute_final_score",
    "parse_inference_score",
]
