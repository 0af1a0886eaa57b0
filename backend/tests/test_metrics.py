"""Tests for metrics and tracing helpers."""
from __future__ import annotations

from typing import Any, Dict

import pytest

from actiongate.errors import CardNotFound
from actiongate.observability import metrics
from actiongate.observability import tracing


class _DummyTrace:
    def __init__(self, name: str, metadata: Dict[str, Any]):
        self.name = name
        self.metadata = metadata
        self.error_info: Dict[str, Any] | None = None
        self.ended = False

    def update(self, metadata=None, error_info=None, **kwargs) -> None:
        if metadata:
            self.metadata.update(metadata)
        if error_info:
            self.error_info = error_info

    def end(self) -> None:
        self.ended = True


class _DummyClient:
    def __init__(self):
        self.traces: list[_DummyTrace] = []

    def trace(self, name: str, metadata: Dict[str, Any] | None = None):
        trace = _DummyTrace(name, metadata or {})
        self.traces.append(trace)
        return trace


@pytest.fixture()
def dummy_client(monkeypatch) -> _DummyClient:
    client = _DummyClient()
    monkeypatch.setattr(tracing, "get_opik_client", lambda: client)
    return client


def test_log_metric_closes_trace(dummy_client) -> None:
    metrics.log_metric("action_card.proposed", 42, metadata={"action_type": "send_reminder", "skipped": None})

    assert dummy_client.traces, "Metric call should record a trace"
    recorded = dummy_client.traces[0]
    assert recorded.name == "metric:action_card.proposed"
    assert recorded.metadata["value"] == 42
    assert recorded.metadata["action_type"] == "send_reminder"
    assert "skipped" not in recorded.metadata
    assert recorded.ended is True


def test_trace_scopes_tenant_and_request(dummy_client) -> None:
    with tracing.trace("action_card.approve", metadata={"card_id": "c1"}, tenant_id="t1", request_id="r1") as span:
        span.update(metadata={"outcome": "executed"})

    recorded = dummy_client.traces[0]
    assert recorded.metadata == {"card_id": "c1", "tenant_id": "t1", "request_id": "r1", "outcome": "executed"}
    assert recorded.ended is True


def test_trace_records_error_and_reraises(dummy_client) -> None:
    with pytest.raises(CardNotFound):
        with tracing.trace("action_card.get"):
            raise CardNotFound("missing")

    recorded = dummy_client.traces[0]
    assert recorded.error_info["type"] == "CardNotFound"
    assert recorded.ended is True


def test_trace_is_noop_without_client(monkeypatch) -> None:
    monkeypatch.setattr(tracing, "get_opik_client", lambda: None)

    with tracing.trace("action_card.propose") as span:
        assert span is None
    metrics.log_metric("action_card.proposed", 1)
