from __future__ import annotations

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_MODEL = "anthropic/claude-3-haiku"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
APP_TITLE = "Coastal Compass"


class Settings(BaseModel):
    api_key: str = Field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY", ""))
    model: str = Field(default_factory=lambda: os.getenv("OPENROUTER_MODEL", DEFAULT_MODEL))
    base_url: str = Field(default_factory=lambda: os.getenv("OPENROUTER_BASE_URL", DEFAULT_BASE_URL))
    app_url: str = Field(default_factory=lambda: os.getenv("APP_URL", "http://localhost:3001"))
    temperature: float = Field(default_factory=lambda: float(os.getenv("LLM_TEMPERATURE", "0.1")))
    max_tokens: int = Field(default_factory=lambda: int(os.getenv("LLM_MAX_TOKENS", "1000")))
    timeout_seconds: float = Field(default_factory=lambda: float(os.getenv("LLM_TIMEOUT_SECONDS", "30")))
    max_attempts: int = Field(default_factory=lambda: int(os.getenv("LLM_MAX_ATTEMPTS", "1")), ge=1)


def get_settings() -> Settings:
    """Read settings from the environment (and .env) at call time."""
    return Settings()
