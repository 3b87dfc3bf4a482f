"""Errors surfaced by the hybrid search engine."""

from typing import Dict

from .models import StrategyKind


class SearchError(Exception):
    """Base exception for search execution."""
    pass


class NoStrategyAvailableError(SearchError):
    """Every dispatched strategy failed, so there is nothing to rank."""

    def __init__(self, reasons: Dict[StrategyKind, str]):
        self.reasons = dict(reasons)
        summary = ", ".join(f"{kind.value}={reason}" for kind, reason in self.reasons.items())
        super().__init__(f"No search strategy available ({summary})")


class SearchConfigurationError(SearchError):
    """A strategy failed in a way retrying cannot fix (e.g. vector dimension mismatch)."""

    def __init__(self, errors: Dict[StrategyKind, str]):
        self.errors = dict(errors)
        summary = "; ".join(f"{kind.value}: {error}" for kind, error in self.errors.items())
        super().__init__(f"Search misconfigured: {summary}")
