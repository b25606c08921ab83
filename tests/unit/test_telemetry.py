from __future__ import annotations

import logging
import time

import pytest

from brepbridge import fuse_all
from brepbridge.telemetry import DEFAULT_TRACER, PerfTracer, emit_audit, traced


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


def _logger(name: str):
    log = logging.getLogger(name)
    log.setLevel(logging.INFO)
    log.handlers = []
    log.propagate = False
    h = _ListHandler()
    log.addHandler(h)
    return log, h


def test_perf_tracer_logs_only_when_slow():
    log, sink = _logger("brepbridge.test.perf")
    tracer = PerfTracer(logger=log, threshold_s=0.001)
    t0 = tracer.start()
    tracer.log_if_slow("FAST_EVENT", t0, threshold_s=10.0)
    time.sleep(0.003)
    tracer.log_if_slow("SLOW_EVENT", t0, extra="n=3")

    text = "\n".join(sink.messages)
    assert "SLOW_EVENT" in text
    assert "n=3" in text
    assert "FAST_EVENT" not in text

    stats = tracer.stats()
    assert stats["FAST_EVENT"]["calls"] == 1
    assert stats["FAST_EVENT"]["slow"] == 0
    assert stats["SLOW_EVENT"]["slow"] == 1
    assert stats["SLOW_EVENT"]["max_ms"] >= 3.0


def test_traced_counts_errors_and_reraises():
    tracer = PerfTracer(threshold_s=10.0)
    with traced("op.ok", tracer=tracer):
        pass
    with pytest.raises(RuntimeError):
        with traced("op.bad", tracer=tracer):
            raise RuntimeError("kernel exploded")
    stats = tracer.stats()
    assert stats["op.ok"]["calls"] == 1
    assert stats["op.ok"]["errors"] == 0
    assert stats["op.bad"]["errors"] == 1
    tracer.reset()
    assert tracer.stats() == {}


def test_emit_audit_is_noop_when_disabled(monkeypatch):
    monkeypatch.delenv("BREP_DEBUG_AUDIT", raising=False)
    log, h = _logger("brepbridge.test.audit.disabled")
    emit_audit("UNIT_EVENT_DISABLED", logger=log, value=1)
    assert h.messages == []


def test_traced_emits_audit_pair_with_error_status(monkeypatch):
    monkeypatch.setenv("BREP_DEBUG_AUDIT", "1")
    log, h = _logger("brepbridge.test.audit.span")
    with pytest.raises(ValueError):
        with traced("SPAN_CASE", tracer=PerfTracer(threshold_s=10.0), logger=log, count=2):
            raise ValueError("bad operand")
    text = "\n".join(h.messages)
    assert "SPAN_CASE:start" in text
    assert "SPAN_CASE:end" in text
    assert '"status": "error"' in text
    assert '"count": 2' in text


def test_fuse_all_is_traced(kernel, make_box):
    DEFAULT_TRACER.reset()
    result = fuse_all([make_box(), make_box(center=(0.5, 0.0, 0.0))], kernel=kernel)
    assert result.is_ok
    assert DEFAULT_TRACER.stats()["booleans.fuse_all"]["calls"] == 1
