"""
Conversational filter resolution.

Turns one user utterance plus the current filter state and the prior turns into
a new filter state. "Clear filters" commands are handled locally; everything
else is sent to the language model, whose JSON answer is treated as a patch and
merged onto the current state.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from telemetry.logging_utils import get_logger

from .errors import GatewayUnavailable, InvalidResponseShape, MalformedResponse, PromptParseFailed
from .filters import (
    DEFAULT_LOCATION,
    DEFAULT_SORT,
    FILTER_FIELDS,
    HOME_TYPES,
    SORT_OPTIONS,
    empty_filters,
    stringify_number,
    validate_filters,
)
from .gateway import ChatMessage, LanguageModelGateway, OpenAIChatGateway
from .keywords import DEFAULT_WHITELIST, KeywordWhitelist

logger = get_logger(__name__)

CLEAR_COMMANDS = ("clear all filters", "reset filters", "clear filters")
KEEP_LOCATION_COMMAND = "except location"
HISTORY_ROLES = {"user", "assistant"}

FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL | re.IGNORECASE)
GREEDY_JSON_RE = re.compile(r"\{.*\}", re.DOTALL)

Validator = Callable[[Mapping[str, Any]], Dict[str, Any]]


class PatchState(Enum):
    UNSET = "unset"
    CLEAR = "clear"
    VALUE = "value"


@dataclass(frozen=True)
class PatchValue:
    state: PatchState
    value: Any = None

    @classmethod
    def from_raw(cls, raw: Any) -> "PatchValue":
        # JSON null reads as "not mentioned"; only an explicit "" clears a field.
        if raw is None:
            return cls(PatchState.UNSET)
        if isinstance(raw, str) and not raw.strip():
            return cls(PatchState.CLEAR, "")
        return cls(PatchState.VALUE, raw)


FilterPatch = Dict[str, PatchValue]


@dataclass
class ResolveResult:
    filters: Dict[str, Any]
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"filters": self.filters, "message": self.message}


def _prior_location(current: Mapping[str, Any]) -> str:
    location = current.get("location")
    if isinstance(location, str) and location.strip():
        return location.strip()
    return DEFAULT_LOCATION


def match_clear_command(utterance: str) -> Optional[bool]:
    """
    Return None when the utterance is not a clear command, otherwise whether the
    location should be kept.
    """
    normalized = (utterance or "").lower().strip()
    if not any(phrase in normalized for phrase in CLEAR_COMMANDS):
        return None
    return KEEP_LOCATION_COMMAND in normalized


def clear_filters(current: Mapping[str, Any], keep_location: bool) -> ResolveResult:
    if keep_location:
        location = _prior_location(current)
        return ResolveResult(
            filters=empty_filters(location),
            message=f"I've cleared all filters except for the location ({location}).",
        )
    return ResolveResult(
        filters=empty_filters(),
        message="I've cleared all filters. What would you like to search for?",
    )


def build_system_prompt(current_filters: Mapping[str, Any], whitelist: KeywordWhitelist) -> str:
    vocabulary = ", ".join(sorted(whitelist.all_tokens()))
    current_text = ""
    if current_filters:
        current_text = "\nCurrent active filters:\n" + json.dumps(dict(current_filters), indent=2, ensure_ascii=False)
    return (
        "You are a real estate search assistant. Parse natural language queries into structured "
        "filter criteria for property searches. The conversation so far is included; the latest "
        "user message is the one to act on.\n\n"
        "Available filter fields:\n"
        f"- location: City, neighborhood, or address (required, default: \"{DEFAULT_LOCATION}\")\n"
        "- minPrice: Minimum price (string of digits, optional)\n"
        "- maxPrice: Maximum price (string of digits, optional)\n"
        f"- home_type: Property type, one of {', '.join(HOME_TYPES)} (optional)\n"
        "- bedsMin: Minimum bedrooms (string, optional)\n"
        "- bathsMin: Minimum bathrooms, may include .5 (string, optional)\n"
        "- sqftMin: Minimum square footage (string, optional)\n"
        "- sqftMax: Maximum square footage (string, optional)\n"
        f"- sort: Sort order, one of {', '.join(SORT_OPTIONS)} (default: \"{DEFAULT_SORT}\")\n"
        f"- keywords: List of property features, only from: {vocabulary}\n\n"
        "Instructions:\n"
        "1. Only include fields that are explicitly mentioned or clearly implied in the latest message. "
        "Do not invent values for fields the user did not mention.\n"
        "2. Convert price ranges to minPrice/maxPrice as plain digits without currency symbols or "
        "separators (e.g. \"under $1M\" -> maxPrice: \"1000000\").\n"
        "3. Bedroom and bathroom counts are minimums: use bedsMin/bathsMin.\n"
        "4. Never clear location unless the user names a new one; omit it when it is unchanged.\n"
        "5. To remove a single filter, send it as an empty string (e.g. \"remove the price cap\" -> "
        "maxPrice: \"\").\n"
        "6. Only send keywords when the user changes features; send the complete new list, using only "
        "the allowed keywords above. Omit keywords otherwise.\n"
        "7. Return valid JSON with a \"filters\" object and a short \"message\" for the user.\n"
        f"{current_text}\n\n"
        "Response format:\n"
        "{\n"
        '  "filters": {"location": "San Diego, CA", "minPrice": "500000", "maxPrice": "1000000", '
        '"bedsMin": "3", "keywords": ["pool"]},\n'
        '  "message": "Searching for 3+ bedroom homes with a pool in San Diego priced $500K-$1M"\n'
        "}"
    )


def _history_messages(history: Optional[Iterable[Any]]) -> List[ChatMessage]:
    turns: List[ChatMessage] = []
    for turn in history or []:
        if isinstance(turn, Mapping):
            role, content = turn.get("role"), turn.get("content")
        else:
            role, content = getattr(turn, "role", None), getattr(turn, "content", None)
        if role not in HISTORY_ROLES or not isinstance(content, str):
            logger.debug("history_turn_skipped", extra={"role": role})
            continue
        turns.append({"role": role, "content": content})
    return turns


def extract_json_object(text: str) -> Dict[str, Any]:
    """
    Pull the JSON object out of a model completion.

    A fenced ```json block wins when present; otherwise the span from the first
    "{" to the last "}" is parsed.
    """
    text = text or ""
    fenced = FENCED_JSON_RE.search(text)
    if fenced:
        try:
            obj = json.loads(fenced.group(1))
            if isinstance(obj, dict):
                return obj
        except json.JSONDecodeError:
            logger.debug("fenced_json_unparseable")
    match = GREEDY_JSON_RE.search(text)
    if not match:
        raise MalformedResponse("No JSON found in model response")
    try:
        obj = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"Invalid JSON in model response: {exc.msg}") from exc
    if not isinstance(obj, dict):
        raise MalformedResponse("Model response JSON is not an object")
    return obj


def _is_scalar(raw: Any) -> bool:
    # Every field except keywords is a string on the wire; numbers are stringified on merge.
    return raw is None or (isinstance(raw, (str, int, float)) and not isinstance(raw, bool))


def parse_model_response(text: str) -> Tuple[FilterPatch, Optional[str]]:
    data = extract_json_object(text)
    raw_filters = data.get("filters")
    if not isinstance(raw_filters, dict):
        raise InvalidResponseShape("Invalid response structure: missing filters object")

    patch: FilterPatch = {}
    for key, raw in raw_filters.items():
        if key not in FILTER_FIELDS:
            logger.debug("patch_field_dropped", extra={"field": key})
            continue
        if key != "keywords" and not _is_scalar(raw):
            logger.debug("patch_value_dropped", extra={"field": key, "value_type": type(raw).__name__})
            continue
        patch[key] = PatchValue.from_raw(raw)

    message = data.get("message")
    if message is None:
        message = data.get("explanation")
    return patch, message if isinstance(message, str) and message else None


def _patch_keywords(value: PatchValue, whitelist: KeywordWhitelist) -> List[str]:
    if value.state is PatchState.CLEAR:
        return []
    raw = value.value
    if isinstance(raw, str):
        raw = raw.split(",")
    elif not isinstance(raw, (list, tuple)):
        raw = [raw]
    kept = whitelist.filter_keywords(raw)
    if len(kept) < len(raw):
        logger.info("keywords_dropped", extra={"requested": len(raw), "kept": kept})
    return kept


def merge_patch(
    current: Mapping[str, Any],
    patch: FilterPatch,
    whitelist: KeywordWhitelist = DEFAULT_WHITELIST,
) -> Dict[str, Any]:
    """Apply a model patch onto the current filters; untouched fields carry over."""
    merged: Dict[str, Any] = dict(current)
    if isinstance(merged.get("keywords"), (list, tuple)):
        merged["keywords"] = whitelist.filter_keywords(merged["keywords"])

    for key, value in patch.items():
        if value.state is PatchState.UNSET:
            continue
        if key == "keywords":
            merged["keywords"] = _patch_keywords(value, whitelist)
            continue
        new_value = stringify_number(value.value)
        if key == "sort" and value.state is PatchState.VALUE and new_value not in SORT_OPTIONS:
            logger.warning("patch_sort_ignored", extra={"sort": str(new_value)[:50]})
            continue
        merged[key] = new_value

    location = merged.get("location")
    if not isinstance(location, str) or not location.strip():
        merged["location"] = _prior_location(current)
    if "sort" in merged and merged["sort"] not in SORT_OPTIONS:
        merged["sort"] = DEFAULT_SORT
    return merged


class FilterResolver:
    """Single entry point for turning an utterance into new filter state."""

    def __init__(
        self,
        gateway: LanguageModelGateway,
        whitelist: KeywordWhitelist = DEFAULT_WHITELIST,
        validator: Optional[Validator] = None,
    ) -> None:
        self.gateway = gateway
        self.whitelist = whitelist
        self.validator = validator

    def build_messages(
        self,
        utterance: str,
        current_filters: Mapping[str, Any],
        history: Optional[Iterable[Any]] = None,
    ) -> List[ChatMessage]:
        return [
            {"role": "system", "content": build_system_prompt(current_filters, self.whitelist)},
            *_history_messages(history),
            {"role": "user", "content": utterance},
        ]

    def resolve(
        self,
        utterance: str,
        current_filters: Optional[Mapping[str, Any]] = None,
        history: Optional[Iterable[Any]] = None,
        *,
        conversation_id: Optional[str] = None,
    ) -> ResolveResult:
        current: Dict[str, Any] = dict(current_filters or {})

        keep_location = match_clear_command(utterance)
        if keep_location is not None:
            result = clear_filters(current, keep_location)
            logger.info(
                "resolve_fast_path",
                extra={"conversation_id": conversation_id, "keep_location": keep_location},
            )
            return result

        messages = self.build_messages(utterance, current, history)
        try:
            raw = self.gateway.complete(messages, conversation_id=conversation_id)
            patch, message = parse_model_response(raw)
        except (GatewayUnavailable, MalformedResponse, InvalidResponseShape) as exc:
            logger.warning(
                "prompt_parse_failed",
                extra={
                    "conversation_id": conversation_id,
                    "error_type": type(exc).__name__,
                    "error": str(exc)[:200],
                },
            )
            raise PromptParseFailed(exc) from exc

        merged = merge_patch(current, patch, self.whitelist)
        if self.validator is not None:
            merged = self.validator(merged)
        logger.info(
            "resolve_complete",
            extra={
                "conversation_id": conversation_id,
                "fields_patched": sorted(k for k, v in patch.items() if v.state is not PatchState.UNSET),
                "history_turns": len(messages) - 2,
            },
        )
        return ResolveResult(filters=merged, message=message)


_DEFAULT_RESOLVER: Optional[FilterResolver] = None


def get_default_resolver() -> FilterResolver:
    """Lazily build a resolver backed by the configured gateway."""
    global _DEFAULT_RESOLVER
    if _DEFAULT_RESOLVER is None:
        _DEFAULT_RESOLVER = FilterResolver(OpenAIChatGateway(), validator=validate_filters)
    return _DEFAULT_RESOLVER


def resolve(
    utterance: str,
    current_filters: Optional[Mapping[str, Any]] = None,
    history: Optional[Iterable[Any]] = None,
) -> ResolveResult:
    return get_default_resolver().resolve(utterance, current_filters, history)
