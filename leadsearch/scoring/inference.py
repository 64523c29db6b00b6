"""
Remote text-completion backend used for lead relevance estimates.

The scorer only needs `await client.infer(prompt) -> str`; any exception or
unusable text is treated as a fallback case by the caller.
"""

from __future__ import annotations

import logging
from typing import Protocol

from openai import AsyncOpenAI

from leadsearch.config import ScoringConfig
from leadsearch.exceptions import InferenceError

log = logging.getLogger(__name__)


class InferenceClient(Protocol):
    async def infer(self, prompt: str) -> str:
        """Return the raw completion text for a single prompt."""
        ...


class OpenAIInferenceClient:
    """
    InferenceClient backed by OpenAI chat completions.

    Short completions (max_tokens=10) at a low temperature: the scorer only
    wants a single integer back. The underlying AsyncOpenAI client is built
    lazily so a missing API key degrades to InferenceError per call instead
    of failing service construction.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "gpt-4",
        base_url: str | None = None,
        timeout_seconds: float = 10.0,
        max_tokens: int = 10,
        temperature: float = 0.3,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._timeout_seconds = timeout_seconds
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = client

    @classmethod
    def from_config(cls, cfg: ScoringConfig) -> OpenAIInferenceClient:
        return cls(
            api_key=cfg.openai_api_key,
            model=cfg.model,
            base_url=cfg.openai_api_base,
            timeout_seconds=cfg.timeout_seconds,
        )

    def _get_client(self) -> AsyncOpenAI:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise InferenceError("OPENAI_API_KEY is not configured")
        self._client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=self._base_url or None,
            timeout=self._timeout_seconds,
            # no client-side retries; failed rows fall back to the baseline score
            max_retries=0,
        )
        return self._client

    async def infer(self, prompt: str) -> str:
        client = self._get_client()
        completion = await client.chat.completions.create(
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        if not completion.choices:
            raise InferenceError("completion returned no choices")
        content = completion.choices[0].message.content
        if not content:
            raise InferenceError("completion returned empty content")
        return content


__all__ = [
    "InferenceClient",
    "OpenAIInferenceClient",
]
