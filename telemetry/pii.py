from __future__ import annotations

import hashlib
import re
from typing import Any, Dict

EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
# Phone-like numbers: optional country code, separators, at least 9 digits overall.
# Plain digit runs such as prices ("1000000") are left alone.
PHONE_RE = re.compile(r"\+?\d[\d\s().-]{8,}\d")
PRICE_LIKE_RE = re.compile(r"^\d+$")

# Keys whose values are user free text and are never logged verbatim.
SENSITIVE_FIELDS = {
    "history",
    "messages",
    "prompt",
    "utterance",
    "raw_prompt",
    "raw_completion",
    "completion",
    "system_prompt",
}

MAX_LOGGED_STRING = 300


def _hash_token(text: str) -> str:
    digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
    return f"[HASH:{digest}]"


def scrub_text(text: str) -> str:
    """Hash e-mail addresses and phone numbers found in free text."""
    if not text:
        return text

    def _replace_phone(match: re.Match) -> str:
        token = match.group(0)
        if PRICE_LIKE_RE.match(token):
            return token
        return f"[PHONE_{_hash_token(token)}]"

    scrubbed = EMAIL_RE.sub(lambda m: f"[EMAIL_{_hash_token(m.group(0))}]", text)
    return PHONE_RE.sub(_replace_phone, scrubbed)


def _summarize(value: Any) -> Dict[str, Any]:
    length = len(value) if hasattr(value, "__len__") else None
    return {"redacted": True, "length": length}


def scrub_value(value: Any) -> Any:
    if isinstance(value, str):
        cleaned = scrub_text(value)
        if len(cleaned) > MAX_LOGGED_STRING:
            return _hash_token(cleaned)
        return cleaned
    if isinstance(value, dict):
        return sanitize_log_payload(value)
    if isinstance(value, (list, tuple)):
        # Chat turns are summarized rather than logged.
        if any(isinstance(item, dict) and "content" in item for item in value):
            return _summarize(value)
        return [scrub_value(item) for item in value]
    return value


def sanitize_log_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Summarize free-text fields and hash contact details before logging."""
    if not isinstance(payload, dict):
        return {}
    cleaned: Dict[str, Any] = {}
    for key, value in payload.items():
        if value is None:
            cleaned[key] = value
        elif str(key).lower() in SENSITIVE_FIELDS:
            cleaned[key] = _summarize(value)
        else:
            cleaned[key] = scrub_value(value)
    return cleaned
