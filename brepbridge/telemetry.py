"""Timing and audit hooks around kernel round trips.

``traced`` wraps one bridge operation: it keeps per-operation timing
counters, logs calls slower than ``BREP_PERF_THRESHOLD_MS`` and, when
``BREP_DEBUG_AUDIT=1``, emits JSON start/end audit records.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from .config import PERF_THRESHOLD_MS


def audit_enabled() -> bool:
    raw = str(os.environ.get("BREP_DEBUG_AUDIT", "")).strip().lower()
    return raw in {"1", "true", "yes", "on"}


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def emit_audit(event: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> None:
    if not audit_enabled():
        return
    log = logger or logging.getLogger("brepbridge.audit")
    payload: Dict[str, Any] = {"event": str(event or "unknown"), "ts": time.time()}
    for k, v in fields.items():
        payload[str(k)] = _jsonable(v)
    log.info("AUDIT %s", json.dumps(payload, ensure_ascii=False, sort_keys=True))


@dataclass
class OperationStats:
    calls: int = 0
    errors: int = 0
    slow: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calls": int(self.calls),
            "errors": int(self.errors),
            "slow": int(self.slow),
            "total_ms": round(float(self.total_ms), 3),
            "max_ms": round(float(self.max_ms), 3),
            "mean_ms": round(float(self.total_ms) / self.calls, 3) if self.calls else 0.0,
        }


class PerfTracer:
    """Latency tracer; only calls slower than the threshold are logged."""

    def __init__(self, logger: Optional[logging.Logger] = None, threshold_s: float = PERF_THRESHOLD_MS / 1000.0):
        self.logger = logger or logging.getLogger("brepbridge.perf")
        self.threshold_s = float(threshold_s)
        self._lock = threading.Lock()
        self._stats: Dict[str, OperationStats] = {}

    def start(self) -> float:
        return time.perf_counter()

    def log_if_slow(
        self,
        tag: str,
        t0: float,
        extra: str = "",
        threshold_s: Optional[float] = None,
        failed: bool = False,
    ) -> float:
        dt = time.perf_counter() - float(t0)
        thr = self.threshold_s if threshold_s is None else float(threshold_s)
        slow = dt > thr
        with self._lock:
            row = self._stats.setdefault(str(tag), OperationStats())
            row.calls += 1
            row.errors += int(bool(failed))
            row.slow += int(slow)
            row.total_ms += dt * 1000.0
            row.max_ms = max(row.max_ms, dt * 1000.0)
        if slow:
            msg = f"{tag} dt={dt * 1000.0:.2f}ms"
            if extra:
                msg += f" | {extra}"
            self.logger.info(msg)
        return dt

    def stats(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {tag: row.to_dict() for tag, row in sorted(self._stats.items())}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


DEFAULT_TRACER = PerfTracer()


@contextmanager
def traced(
    operation: str,
    *,
    tracer: Optional[PerfTracer] = None,
    logger: Optional[logging.Logger] = None,
    **fields: Any,
) -> Iterator[None]:
    """Time ``operation`` and audit its start and end."""
    perf = tracer or DEFAULT_TRACER
    auditing = audit_enabled()
    if auditing:
        emit_audit(f"{operation}:start", logger=logger, **fields)
    t0 = perf.start()
    status = "ok"
    error_text = ""
    try:
        yield
    except Exception as exc:
        status = "error"
        error_text = f"{type(exc).__name__}: {exc}"
        raise
    finally:
        extra = " ".join(f"{k}={v}" for k, v in fields.items())
        dt = perf.log_if_slow(operation, t0, extra=extra, failed=(status == "error"))
        if auditing:
            emit_audit(
                f"{operation}:end",
                logger=logger,
                status=status,
                elapsed_ms=round(dt * 1000.0, 3),
                error=error_text,
                **fields,
            )
