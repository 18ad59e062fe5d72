"""
Bill line → product name matching.

Order of precedence:
  1. exact SKU
  2. exact name
  3. normalized name (case, whitespace, punctuation)
  4. difflib close match at or above ``name_match_cutoff``

Matching is best-effort. ``match_names`` runs off the event loop under
``name_match_timeout_seconds``; a timeout or failure maps every line to
no match rather than failing the bill.
"""

import asyncio
import difflib
import re
import uuid
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class Candidate:
    product_id: uuid.UUID
    sku: str
    name: str


@dataclass(frozen=True)
class NameMatch:
    product_id: uuid.UUID
    score: float


def normalize_name(name: str) -> str:
    name = _PUNCTUATION.sub(" ", name.upper())
    return _WHITESPACE.sub(" ", name).strip()


class NameMatcher:
    """Index of active products, built once per bill."""

    def __init__(self, candidates: list[Candidate], cutoff: float = 0.6):
        self.cutoff = cutoff
        self._by_sku = {c.sku.strip().upper(): c for c in candidates}
        self._by_name = {c.name: c for c in candidates}
        self._by_normalized = {}
        for candidate in candidates:
            self._by_normalized.setdefault(normalize_name(candidate.name), candidate)

    def match(self, raw_name: str) -> NameMatch | None:
        if not raw_name or not raw_name.strip():
            return None

        sku_hit = self._by_sku.get(raw_name.strip().upper())
        if sku_hit is not None:
            return NameMatch(sku_hit.product_id, 1.0)

        exact = self._by_name.get(raw_name)
        if exact is not None:
            return NameMatch(exact.product_id, 1.0)

        normalized = normalize_name(raw_name)
        hit = self._by_normalized.get(normalized)
        if hit is not None:
            return NameMatch(hit.product_id, 1.0)

        close = difflib.get_close_matches(normalized, list(self._by_normalized), n=1, cutoff=self.cutoff)
        if not close:
            return None
        score = difflib.SequenceMatcher(None, normalized, close[0]).ratio()
        return NameMatch(self._by_normalized[close[0]].product_id, round(score, 3))

    def match_all(self, names: list[str]) -> list[NameMatch | None]:
        return [self.match(name) for name in names]


async def match_names(
    matcher: NameMatcher,
    names: list[str],
    timeout: float,
) -> list[NameMatch | None]:
    """Match ``names`` in a worker thread; degrade to no matches on timeout or error."""
    if not names:
        return []
    try:
        return await asyncio.wait_for(asyncio.to_thread(matcher.match_all, names), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("reconciliation.name_match_timeout", lines=len(names), timeout=timeout)
    except Exception as exc:
        logger.warning("reconciliation.name_match_failed", lines=len(names), error=str(exc))
    return [None] * len(names)
