"""Session wrapper that owns one conversation's filter state of record and its turns."""

from __future__ import annotations

import json
import uuid
from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional

from telemetry.logging_utils import get_logger

from .filters import ParsePromptRequest, validate_filters
from .resolver import FilterResolver, get_default_resolver

logger = get_logger(__name__)


def _snapshot(state: Dict[str, Any]) -> Dict[str, Any]:
    """Return a JSON-safe deep copy of the session state."""
    return json.loads(json.dumps(state))


class FilterSession:
    """
    Holds filters plus history for one conversation.

    Not thread-safe: callers sharing a session must serialise ``send`` calls.
    """

    def __init__(
        self,
        resolver: Optional[FilterResolver] = None,
        filters: Optional[Mapping[str, Any]] = None,
        history: Optional[List[Dict[str, str]]] = None,
        conversation_id: Optional[str] = None,
    ) -> None:
        self.resolver = resolver or get_default_resolver()
        self.filters: Dict[str, Any] = validate_filters(filters)
        self.history: List[Dict[str, str]] = deepcopy(history) if history else []
        self.conversation_id = conversation_id or str(uuid.uuid4())

    def send(self, text: str) -> Dict[str, Any]:
        """Resolve one user message; state is only replaced when resolution succeeds."""
        user_input = (text or "").strip()
        if not user_input:
            raise ValueError("Message must not be empty.")

        logger.info(
            "session_message_start",
            extra={"conversation_id": self.conversation_id, "history_turns": len(self.history)},
        )
        result = self.resolver.resolve(
            user_input,
            self.filters,
            self.history,
            conversation_id=self.conversation_id,
        )
        filters = validate_filters(result.filters)

        self.filters = filters
        self.history.append({"role": "user", "content": user_input})
        if result.message:
            self.history.append({"role": "assistant", "content": result.message})

        logger.info(
            "session_message_complete",
            extra={
                "conversation_id": self.conversation_id,
                "location": filters.get("location"),
                "keywords": filters.get("keywords"),
            },
        )
        result.filters = deepcopy(filters)
        return result.to_dict()

    def snapshot(self) -> Dict[str, Any]:
        return _snapshot(
            {
                "conversation_id": self.conversation_id,
                "filters": self.filters,
                "history": self.history,
            }
        )


def handle_parse_prompt(payload: Mapping[str, Any], resolver: Optional[FilterResolver] = None) -> Dict[str, Any]:
    """
    Stateless request handler: ``{prompt, currentFilters, history}`` in,
    ``{filters, message}`` out. Raises pydantic ``ValidationError`` for a bad
    request and ``PromptParseFailed`` when the model call fails.
    """
    request = ParsePromptRequest.model_validate(dict(payload))
    resolver = resolver or get_default_resolver()
    current = request.currentFilters.model_dump(exclude_none=True) if request.currentFilters else {}
    history = [turn.model_dump() for turn in request.history]
    result = resolver.resolve(request.prompt, current, history)
    result.filters = validate_filters(result.filters)
    return result.to_dict()
