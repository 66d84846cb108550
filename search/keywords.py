"""Keyword whitelist: maps free-text feature phrases to canonical search tags."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, List, Mapping, Optional

# phrase -> canonical token (many-to-one)
KEYWORD_MAP: Mapping[str, str] = MappingProxyType(
    {
        # Core features
        "pool": "pool",
        "swimming pool": "pool",
        "garage": "garage",
        "two car garage": "garage",
        "2-car garage": "garage",
        "fireplace": "fireplace",
        "wood stove": "fireplace",
        "basement": "basement",
        "finished basement": "basement",
        "adu": "adu",
        "guest house": "guestHouse",
        "casita": "guestHouse",
        "in-law": "guestHouse",
        "solar": "solar",
        "solar panels": "solar",
        "new construction": "newConstruction",
        "brand new": "newConstruction",
        "just built": "newConstruction",
        "single story": "singleStory",
        "one story": "singleStory",
        "ranch style": "singleStory",
        "fixer": "fixer",
        "fixer-upper": "fixer",
        "needs tlc": "fixer",
        "open floor plan": "openFloorPlan",
        "great room": "openFloorPlan",
        "garden": "garden",
        "landscaped yard": "garden",
        # Views; "view" is the broad catch-all
        "view": "view",
        "ocean view": "ocean view",
        "mountain view": "mountain view",
        "bay view": "bay view",
        "lake view": "lake view",
        "river view": "river view",
        "city view": "city view",
        "golf course view": "golf course view",
        "park view": "park view",
        "water view": "water view",
        "canyon view": "canyon view",
        "valley view": "valley view",
        "harbor view": "harbor view",
        "garden view": "garden view",
        # Waterfronts; "waterfront" is the broad catch-all
        "waterfront": "waterfront",
        "oceanfront": "oceanfront",
        "beachfront": "beachfront",
        "lakefront": "lakefront",
        "riverfront": "riverfront",
        "bayfront": "bayfront",
        "canal front": "canal front",
        "harbor front": "harbor front",
        "lagoon front": "lagoon front",
    }
)


class KeywordWhitelist:
    """Immutable phrase table plus the derived token vocabulary."""

    def __init__(self, mapping: Mapping[str, str]) -> None:
        self._mapping: Mapping[str, str] = MappingProxyType(
            {phrase.lower().strip(): token for phrase, token in mapping.items()}
        )
        self._tokens: FrozenSet[str] = frozenset(self._mapping.values())

    def canonicalize(self, phrase: Any) -> Optional[str]:
        """Exact-match lookup after lowercasing and trimming; no fuzzy matching."""
        if not isinstance(phrase, str):
            return None
        return self._mapping.get(phrase.lower().strip())

    def all_tokens(self) -> FrozenSet[str]:
        return self._tokens

    def is_whitelisted(self, phrase: Any) -> bool:
        return self.canonicalize(phrase) is not None

    def filter_keywords(self, items: Iterable[Any]) -> List[str]:
        """
        Map model-supplied keywords onto canonical tokens.

        Unknown entries are dropped silently. Canonical tokens that are not
        phrases themselves (e.g. ``singleStory``) are kept as-is. Order is
        preserved and duplicates keep their first position.
        """
        cleaned: List[str] = []
        for item in items or []:
            token = self.canonicalize(item)
            if token is None and isinstance(item, str) and item.strip() in self._tokens:
                token = item.strip()
            if token is None or token in cleaned:
                continue
            cleaned.append(token)
        return cleaned


DEFAULT_WHITELIST = KeywordWhitelist(KEYWORD_MAP)


def canonicalize(phrase: Any) -> Optional[str]:
    return DEFAULT_WHITELIST.canonicalize(phrase)


def all_tokens() -> FrozenSet[str]:
    return DEFAULT_WHITELIST.all_tokens()


def is_whitelisted(phrase: Any) -> bool:
    return DEFAULT_WHITELIST.is_whitelisted(phrase)
