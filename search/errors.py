"""Error taxonomy for prompt parsing and filter validation."""

from __future__ import annotations

from typing import Optional


class FilterResolverError(Exception):
    """Base class for everything raised by the search package."""


class GatewayUnavailable(FilterResolverError):
    """The language model could not be reached or answered with a failure status."""


class MalformedResponse(FilterResolverError):
    """The model answered but no parseable JSON object was found in its text."""


class InvalidResponseShape(FilterResolverError):
    """The model's JSON parsed but lacks a ``filters`` object."""


class FilterValidationError(FilterResolverError):
    """A candidate filter state failed schema validation."""

    def __init__(self, message: str, errors: Optional[list] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class PromptParseFailed(FilterResolverError):
    """Single externally visible failure for the model-assisted parse path."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"Failed to parse prompt: {cause}")
        self.cause = cause
