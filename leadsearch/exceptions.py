"""
Shared exception classes used across the lead search engine.

Only ValidationError and QueryError ever reach callers of
LeadSearchService.search(). InferenceError and CacheError are raised by
collaborator adapters and recovered inside the engine.
"""

from __future__ import annotations


class LeadSearchError(Exception):
    """Base class for all lead search errors."""

    pass


class ValidationError(LeadSearchError):
    """
    Raised when search parameters or scoring criteria are malformed or out
    of range.

    Attributes:
        field: name of the offending parameter (e.g. "limit", "sort_order").
    """

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class QueryError(LeadSearchError):
    """
    Raised when the record store fails (connectivity, syntax, timeout).

    The underlying store exception is chained as __cause__.

    Attributes:
        operation: pipeline step that failed (e.g. "search.execute_query").
    """

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class InferenceError(LeadSearchError):
    """
    Raised when the inference backend returns nothing usable.

    Never surfaced: the scorer falls back to its baseline score.
    """

    pass


class CacheError(LeadSearchError):
    """
    Raised by cache stores on get/set failures.

    Never surfaced: reads degrade to a miss, writes to a no-op.
    """

    pass


__all__ = [
    "LeadSearchError",
    "ValidationError",
    "QueryError",
    "InferenceError",
    "CacheError",
]
