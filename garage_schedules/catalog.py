"""
Integration-item resolution: free-text item name → Garage catalog identifier.

Strategy, strictest first:
  1. Exact match (case-insensitive)
  2. Canonical match — "Seo  Pro!!" and "SEO Pro" canonicalize identically
  3. Token-overlap fuzzy match, accepted only above a fixed threshold

Below the threshold the answer is None. A wrong integration item books
revenue against the wrong product, so "no match" is always preferred over
a low-confidence guess.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from .config import DEFAULT_POLICY, PolicyConfig

_ADDON = re.compile(r"\badd[\s-]?on\b")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SPLIT_DIGITS = re.compile(r"(?<=\d) (?=\d)")


@dataclass
class CatalogMatch:
    """Result of a catalog lookup."""

    original: str  # The free-text name we were given
    name: str  # Canonical catalog name it resolved to
    integration_item: str
    method: str  # "exact", "canonical" or "fuzzy"
    score: float  # 1.0 for exact/canonical


def canonicalize(text: str) -> str:
    """Lower-case, "&" → "and", drop "add-on", strip punctuation, join split digits."""
    text = text.lower().replace("&", " and ")
    text = _ADDON.sub(" ", text)
    text = _NON_ALNUM.sub(" ", text).strip()
    text = re.sub(r"\s+", " ", text)
    return _SPLIT_DIGITS.sub("", text)


def tokenize(text: str, stop_words: Iterable[str] = ()) -> set[str]:
    stop = set(stop_words)
    return {t for t in canonicalize(text).split() if t not in stop}


class CatalogMatcher:
    """Matches item names against a fixed name → integration-item table.

    Usage:
        matcher = CatalogMatcher.from_policy(policy)
        match = matcher.match("Seo  Pro!!")
        match.integration_item  # "ii_seo_pro"
    """

    def __init__(
        self,
        catalog: Mapping[str, str],
        stop_words: Iterable[str] = (),
        flavor_words: Iterable[str] = (),
        threshold: float = 0.55,
    ):
        self.catalog = dict(catalog)
        self.stop_words = frozenset(stop_words)
        self.flavor_words = frozenset(flavor_words)
        self.threshold = threshold

        self._by_lower = {name.lower(): name for name in self.catalog}
        self._by_canonical: dict[str, str] = {}
        for name in self.catalog:
            self._by_canonical.setdefault(canonicalize(name), name)
        self._tokens = {name: tokenize(name, self.stop_words) for name in self.catalog}

    @classmethod
    def from_policy(cls, config: PolicyConfig | None = None) -> CatalogMatcher:
        config = config or DEFAULT_POLICY
        return cls(
            config.catalog,
            stop_words=config.catalog_stop_words,
            flavor_words=config.catalog_flavor_words,
            threshold=config.catalog_fuzzy_threshold,
        )

    def __len__(self) -> int:
        return len(self.catalog)

    def match(self, item_name: str | None) -> CatalogMatch | None:
        """Resolve `item_name` to a catalog entry, or None."""
        if not item_name or not item_name.strip():
            return None

        # ── Step 1: Exact match (case-insensitive) ──────────────────
        name = self._by_lower.get(item_name.strip().lower())
        if name is not None:
            return self._result(item_name, name, "exact", 1.0)

        # ── Step 2: Canonical match ─────────────────────────────────
        name = self._by_canonical.get(canonicalize(item_name))
        if name is not None:
            return self._result(item_name, name, "canonical", 1.0)

        # ── Step 3: Token-overlap fuzzy match ───────────────────────
        query = tokenize(item_name, self.stop_words)
        if not query:
            return None

        best_name: str | None = None
        best_score = 0.0
        for candidate, tokens in self._tokens.items():
            score = self.fuzzy_score(query, tokens)
            if score > best_score:
                best_name, best_score = candidate, score

        if best_name is not None and best_score >= self.threshold:
            return self._result(item_name, best_name, "fuzzy", round(best_score, 3))
        return None

    def fuzzy_score(self, query: set[str], candidate: set[str]) -> float:
        """Jaccard plus coverage bonuses; 0.0 for flavor-only overlap of one token.

        "SEO Pro" vs "Blog Pro" share only "pro", which says nothing about
        the product, so that pair scores zero.
        """
        if not query or not candidate:
            return 0.0
        overlap = query & candidate
        if not overlap:
            return 0.0
        substantive = overlap - self.flavor_words
        if not substantive and len(overlap) < 2:
            return 0.0

        inter = len(overlap)
        score = inter / len(query | candidate)
        score += 0.25 * (inter / len(query))
        score += 0.15 * (inter / len(candidate))
        if substantive:
            score += 0.10
        return score

    def _result(self, original: str, name: str, method: str, score: float) -> CatalogMatch:
        return CatalogMatch(
            original=original,
            name=name,
            integration_item=self.catalog[name],
            method=method,
            score=score,
        )
