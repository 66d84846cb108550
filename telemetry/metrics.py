from __future__ import annotations

import csv
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

METRICS_DIR = Path(os.getenv("METRICS_DIR") or Path(__file__).resolve().parent.parent / "metrics")
CSV_COLUMNS = [
    "timestamp",
    "component",
    "model_or_tool",
    "tokens_in",
    "tokens_out",
    "latency_ms",
    "cost_usd",
    "conversation_id",
    "ok",
]

# Approximate per-1K token pricing in USD.
MODEL_PRICING_PER_1K = {
    "anthropic/claude-3-haiku": {"input": 0.00025, "output": 0.00125},
    "anthropic/claude-3.5-haiku": {"input": 0.0008, "output": 0.004},
    "openai/gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "openai/gpt-4o": {"input": 0.0025, "output": 0.01},
}

_csv_lock = threading.Lock()


def _csv_path() -> Path:
    return METRICS_DIR / "llm_calls.csv"


def _ensure_csv_header(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        return
    with _csv_lock:
        if path.exists():
            return
        with path.open("w", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
            writer.writeheader()


def _coerce_number(value: Any) -> Optional[float]:
    try:
        if value is None or value == "":
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def estimate_cost(model: Optional[str], tokens_in: Optional[int], tokens_out: Optional[int]) -> Optional[float]:
    """Rudimentary USD cost estimate using static per-1K token pricing."""
    if model is None:
        return None
    pricing = MODEL_PRICING_PER_1K.get(model.lower())
    if pricing is None:
        return None
    cost = 0.0
    if tokens_in:
        cost += (tokens_in / 1000.0) * pricing["input"]
    if tokens_out:
        cost += (tokens_out / 1000.0) * pricing["output"]
    return round(cost, 6)


def extract_usage_tokens(obj: Any) -> Tuple[Optional[int], Optional[int]]:
    """Pull prompt/completion token counts from a chat completion or a raw payload."""
    usage = getattr(obj, "usage", None)
    if usage is None and isinstance(obj, dict):
        usage = obj.get("usage")
    if usage is None:
        return None, None
    if isinstance(usage, dict):
        return usage.get("prompt_tokens"), usage.get("completion_tokens")
    return getattr(usage, "prompt_tokens", None), getattr(usage, "completion_tokens", None)


def log_metric(
    component: str,
    model_or_tool: Optional[str],
    *,
    tokens_in: Optional[int] = None,
    tokens_out: Optional[int] = None,
    latency_ms: Optional[float] = None,
    conversation_id: Optional[str] = None,
    ok: bool = True,
) -> None:
    """Append a metric row to the local CSV (best effort)."""
    row = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "component": component,
        "model_or_tool": model_or_tool or "",
        "tokens_in": tokens_in,
        "tokens_out": tokens_out,
        "latency_ms": round(latency_ms, 3) if latency_ms is not None else None,
        "cost_usd": estimate_cost(model_or_tool, tokens_in, tokens_out),
        "conversation_id": conversation_id,
        "ok": ok,
    }
    csv_row = {k: ("" if v is None else v) for k, v in row.items()}
    path = _csv_path()
    try:
        _ensure_csv_header(path)
        with _csv_lock:
            with path.open("a", newline="", encoding="utf-8") as f:
                writer = csv.DictWriter(f, fieldnames=CSV_COLUMNS)
                writer.writerow(csv_row)
    except OSError:
        pass  # metrics must never break a request


@dataclass
class MetricTimer:
    component: str
    model_or_tool: Optional[str]
    conversation_id: Optional[str]
    _start: float = field(default_factory=time.perf_counter)

    def done(
        self,
        *,
        tokens_in: Optional[int] = None,
        tokens_out: Optional[int] = None,
        ok: bool = True,
    ) -> None:
        latency_ms = (time.perf_counter() - self._start) * 1000
        log_metric(
            self.component,
            self.model_or_tool,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            latency_ms=latency_ms,
            conversation_id=self.conversation_id,
            ok=ok,
        )


def start_timer(component: str, model_or_tool: Optional[str], conversation_id: Optional[str] = None) -> MetricTimer:
    return MetricTimer(component=component, model_or_tool=model_or_tool, conversation_id=conversation_id)


def fetch_metrics(limit: int = 500) -> List[Dict[str, Any]]:
    """Return up to ``limit`` rows from the local CSV."""
    path = _csv_path()
    if not path.exists():
        return []
    rows: List[Dict[str, Any]] = []
    with path.open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for idx, row in enumerate(reader):
            if idx >= limit:
                break
            rows.append(row)
    return rows


def summarize_metrics(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Compute total cost, failure count and average latency per component."""
    total_cost = 0.0
    failures = 0
    latency_by_component: Dict[str, List[float]] = {}
    for row in records:
        cost = _coerce_number(row.get("cost_usd"))
        if cost:
            total_cost += cost
        if str(row.get("ok", "True")) == "False":
            failures += 1
        latency = _coerce_number(row.get("latency_ms"))
        component = row.get("component") or "unknown"
        if latency is not None:
            latency_by_component.setdefault(component, []).append(latency)
    avg_latency = {
        comp: round(sum(vals) / len(vals), 3) for comp, vals in latency_by_component.items() if vals
    }
    return {
        "total_cost_usd": round(total_cost, 6),
        "average_latency_ms": avg_latency,
        "failures": failures,
        "sample_size": len(records),
    }
