from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from telemetry.logging_utils import get_logger

from .errors import FilterValidationError

logger = get_logger(__name__)

DEFAULT_LOCATION = "Aptos, CA"
DEFAULT_SORT = "Price_High_Low"

SORT_OPTIONS = (
    "Price_High_Low",
    "Price_Low_High",
    "Newest",
    "Oldest",
    "Sqft_High_Low",
    "Sqft_Low_High",
    "Square_Feet",
    "Bedrooms",
    "Bathrooms",
    "Lot_Size",
)

HOME_TYPES = (
    "Houses",
    "Condos",
    "Townhomes",
    "Apartments",
    "Manufactured",
    "LotsLand",
    "Multi-family",
)

# Optional string fields that are cleared to "" by a reset.
CLEARABLE_FIELDS = (
    "minPrice",
    "maxPrice",
    "home_type",
    "bedsMin",
    "bathsMin",
    "sqftMin",
    "sqftMax",
)

FILTER_FIELDS = ("location", *CLEARABLE_FIELDS, "sort", "keywords")


def stringify_number(value: Any) -> Any:
    """Render int/float filter values the way the search API expects them (plain digit strings)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    return value


class FilterState(BaseModel):
    location: str = Field(default=DEFAULT_LOCATION, min_length=1)
    minPrice: Optional[str] = None
    maxPrice: Optional[str] = None
    home_type: Optional[str] = None
    bedsMin: Optional[str] = None
    bathsMin: Optional[str] = None
    sqftMin: Optional[str] = None
    sqftMax: Optional[str] = None
    sort: str = DEFAULT_SORT
    keywords: List[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("location", mode="before")
    @classmethod
    def _default_location(cls, value: Any) -> Any:
        if value is None:
            return DEFAULT_LOCATION
        return value.strip() if isinstance(value, str) else value

    @field_validator(*CLEARABLE_FIELDS, mode="before")
    @classmethod
    def _coerce_numeric_strings(cls, value: Any) -> Any:
        return stringify_number(value)

    @field_validator("sort", mode="before")
    @classmethod
    def _check_sort(cls, value: Any) -> Any:
        if value is None or value == "":
            return DEFAULT_SORT
        if value not in SORT_OPTIONS:
            raise ValueError(f"sort must be one of {', '.join(SORT_OPTIONS)}")
        return value

    @field_validator("keywords", mode="before")
    @classmethod
    def _split_keywords(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class ConversationTurn(BaseModel):
    role: str
    content: str


class ParsePromptRequest(BaseModel):
    prompt: str = Field(min_length=1)
    currentFilters: Optional[FilterState] = None
    history: List[ConversationTurn] = Field(default_factory=list)


def validate_filters(candidate: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Validate a candidate filter mapping and apply schema defaults."""
    try:
        model = FilterState.model_validate(dict(candidate or {}))
    except ValidationError as exc:
        logger.warning("filter_validation_failed", extra={"error": str(exc)[:200]})
        raise FilterValidationError("Invalid filter parameters", errors=exc.errors()) from exc
    return model.model_dump(exclude_none=True)


def empty_filters(location: Optional[str] = None) -> Dict[str, Any]:
    """Return a fully reset filter state; blank locations fall back to the default."""
    cleared: Dict[str, Any] = {"location": str(location or "").strip() or DEFAULT_LOCATION}
    for field in CLEARABLE_FIELDS:
        cleared[field] = ""
    cleared["sort"] = DEFAULT_SORT
    cleared["keywords"] = []
    return cleared
