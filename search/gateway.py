"""Language model gateway: one chat completion per call, errors surfaced as GatewayUnavailable."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol

from openai import OpenAI, OpenAIError

from telemetry.logging_utils import get_logger
from telemetry.metrics import extract_usage_tokens, start_timer
from telemetry.retry import retry_with_backoff

from .config import APP_TITLE, Settings, get_settings
from .errors import GatewayUnavailable

logger = get_logger(__name__)

ChatMessage = Dict[str, str]


class LanguageModelGateway(Protocol):
    def complete(self, messages: List[ChatMessage], *, conversation_id: Optional[str] = None) -> str:
        ...


class OpenAIChatGateway:
    """OpenAI-compatible chat completions client (OpenRouter by default)."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Any] = None) -> None:
        self.settings = settings or get_settings()
        if client is None:
            if not self.settings.api_key:
                raise RuntimeError("Missing required environment variable: OPENROUTER_API_KEY")
            # SDK retries are disabled; LLM_MAX_ATTEMPTS is the only retry policy.
            client = OpenAI(
                api_key=self.settings.api_key,
                base_url=self.settings.base_url,
                timeout=self.settings.timeout_seconds,
                max_retries=0,
                default_headers={"HTTP-Referer": self.settings.app_url, "X-Title": APP_TITLE},
            )
        self._client = client

    @property
    def model(self) -> str:
        return self.settings.model

    def complete(self, messages: List[ChatMessage], *, conversation_id: Optional[str] = None) -> str:
        """Return the raw text of one completion for ``messages``."""

        def _log_retry(attempt: int, exc: BaseException) -> None:
            logger.warning(
                "gateway_retry",
                extra={"model": self.model, "attempt": attempt, "error": str(exc)[:200]},
            )

        return retry_with_backoff(
            lambda: self._complete_once(messages, conversation_id),
            attempts=self.settings.max_attempts,
            retry_exceptions=(GatewayUnavailable,),
            on_retry=_log_retry,
        )

    def _complete_once(self, messages: List[ChatMessage], conversation_id: Optional[str]) -> str:
        timer = start_timer("filter_parse", self.model, conversation_id)
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
            )
        except OpenAIError as exc:
            timer.done(ok=False)
            logger.warning(
                "gateway_request_failed",
                extra={"model": self.model, "error_type": type(exc).__name__, "error": str(exc)[:200]},
            )
            raise GatewayUnavailable(f"Language model request failed: {exc}") from exc

        tokens_in, tokens_out = extract_usage_tokens(response)
        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        timer.done(tokens_in=tokens_in, tokens_out=tokens_out, ok=bool(content))
        if not content:
            raise GatewayUnavailable("No response content from language model")
        logger.debug(
            "gateway_completion",
            extra={"model": self.model, "tokens_in": tokens_in, "tokens_out": tokens_out},
        )
        return content

    def list_models(self) -> List[Dict[str, Any]]:
        """List the provider's models; returns an empty list when the call fails."""
        try:
            page = self._client.models.list()
        except OpenAIError as exc:
            logger.warning("list_models_failed", extra={"error": str(exc)[:200]})
            return []
        models: List[Dict[str, Any]] = []
        for item in getattr(page, "data", None) or []:
            if isinstance(item, dict):
                models.append(item)
            elif hasattr(item, "model_dump"):
                models.append(item.model_dump())
        return models
