import json
from typing import Any, Dict, List, Optional

import pytest

from search.resolver import FilterResolver
from telemetry import metrics


class FakeGateway:
    """Records every request and answers with a canned completion (or raises)."""

    def __init__(self, reply: Any = None, error: Optional[BaseException] = None):
        self.reply = reply
        self.error = error
        self.calls: List[List[Dict[str, str]]] = []

    def complete(self, messages, *, conversation_id=None):
        self.calls.append([dict(m) for m in messages])
        if self.error is not None:
            raise self.error
        if isinstance(self.reply, (dict, list)):
            return json.dumps(self.reply)
        return self.reply


@pytest.fixture(autouse=True)
def isolated_metrics(tmp_path, monkeypatch):
    """Keep metric CSV rows out of the working tree."""
    monkeypatch.setattr(metrics, "METRICS_DIR", tmp_path / "metrics")
    yield tmp_path / "metrics"


@pytest.fixture()
def make_resolver():
    def _make(reply=None, error=None, validator=None):
        gateway = FakeGateway(reply=reply, error=error)
        return FilterResolver(gateway, validator=validator), gateway

    return _make
