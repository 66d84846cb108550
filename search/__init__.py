"""
Conversational filter resolution for property search.

Exposes the resolver, the keyword whitelist and the filter validator so callers
(the CLI now, an HTTP route later) can turn prompts into filter state.
"""

from .errors import (
    FilterValidationError,
    GatewayUnavailable,
    InvalidResponseShape,
    MalformedResponse,
    PromptParseFailed,
)
from .filters import DEFAULT_LOCATION, DEFAULT_SORT, FilterState, validate_filters
from .keywords import DEFAULT_WHITELIST, KeywordWhitelist
from .resolver import FilterResolver, ResolveResult

__all__ = [
    "DEFAULT_LOCATION",
    "DEFAULT_SORT",
    "DEFAULT_WHITELIST",
    "FilterResolver",
    "FilterState",
    "FilterValidationError",
    "GatewayUnavailable",
    "InvalidResponseShape",
    "KeywordWhitelist",
    "MalformedResponse",
    "PromptParseFailed",
    "ResolveResult",
    "validate_filters",
]
