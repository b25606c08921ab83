from __future__ import annotations

import logging

import pytest

from brepbridge.kernel.models import ErrorKind, KernelError
from brepbridge.memory import DisposalScope, NativeHandle, local_gc, with_scope


pytestmark = pytest.mark.kernel


class _Native:
    def __init__(self, name, log, fail=False):
        self.name = name
        self.log = log
        self.fail = fail

    def delete(self):
        self.log.append(self.name)
        if self.fail:
            raise RuntimeError(f"cannot free {self.name}")


def test_scope_releases_in_reverse_order():
    log = []
    scope = DisposalScope(name="lifo")
    for name in ("a", "b", "c"):
        scope.register(NativeHandle(_Native(name, log)))

    result = scope.close()

    assert result.is_ok
    assert log == ["c", "b", "a"]


def test_three_handles_released_only_at_close():
    log = []
    scope = DisposalScope()
    handles = [scope.register(NativeHandle(_Native(f"p{i}", log))) for i in (1, 2, 3)]

    assert log == []
    assert all(not h.disposed for h in handles)

    scope.close()

    assert len(log) == 3
    assert all(h.disposed for h in handles)
    assert scope.stats() == {"registered": 3, "released": 3, "pending": 0, "failed": 0}


def test_failing_release_does_not_stop_the_others():
    log = []
    scope = DisposalScope(name="partial")
    scope.register(NativeHandle(_Native("a", log)))
    scope.register(NativeHandle(_Native("b", log, fail=True)))
    scope.register(NativeHandle(_Native("c", log)))

    result = scope.close()

    assert log == ["c", "b", "a"]
    assert result.is_err
    assert result.error.kind == ErrorKind.DISPOSAL
    assert result.error.code == "SCOPE_RELEASE_FAILED"
    assert isinstance(result.error.cause, RuntimeError)
    assert len(scope.errors) == 1


def test_register_returns_argument_and_rejects_after_close():
    scope = DisposalScope()
    handle = NativeHandle(_Native("x", []))
    assert scope.register(handle) is handle
    scope.close()
    assert scope.closed
    assert scope.close().is_ok

    with pytest.raises(KernelError) as exc:
        scope.register(NativeHandle(_Native("y", [])))
    assert exc.value.code == "SCOPE_CLOSED"


def test_register_rejects_objects_without_release_or_delete():
    scope = DisposalScope()
    with pytest.raises(KernelError) as exc:
        scope.register(object())
    assert exc.value.kind == ErrorKind.VALIDATION
    with pytest.raises(KernelError):
        scope.register(None)


def test_raw_native_registered_in_two_scopes_is_freed_once(kernel, make_box):
    shape = make_box()
    outer = DisposalScope(name="outer")
    inner = DisposalScope(name="inner")
    outer.register(shape)
    inner.register(shape)

    assert inner.close().is_ok
    assert shape.deleted
    assert outer.close().is_ok
    assert kernel.calls["delete"] == 1


def test_nested_scopes_are_independent():
    log = []
    with DisposalScope(name="outer") as outer:
        outer.register(NativeHandle(_Native("outer", log)))
        escaping = NativeHandle(_Native("escaping", log))
        with DisposalScope(name="inner") as inner:
            inner.register(NativeHandle(_Native("inner", log)))
            inner.register(escaping)
            outer.register(escaping)
        assert log == ["escaping", "inner"]
        assert len(outer) == 2
    assert log == ["escaping", "inner", "outer"]


def test_with_scope_returns_body_result_and_releases():
    log = []

    def body(scope):
        scope.register(NativeHandle(_Native("tmp", log)))
        return 42

    assert with_scope(body) == 42
    assert log == ["tmp"]


def test_with_scope_releases_when_body_raises():
    log = []

    def body(scope):
        scope.register(NativeHandle(_Native("tmp", log)))
        raise ValueError("boom")

    with pytest.raises(ValueError, match="boom"):
        with_scope(body)
    assert log == ["tmp"]


def test_release_failure_does_not_replace_body_exception():
    log = []
    with pytest.raises(ValueError):
        with DisposalScope() as scope:
            scope.register(NativeHandle(_Native("bad", log, fail=True)))
            raise ValueError("body")
    assert scope.last_close_result.is_err


def test_defer_runs_in_lifo_slot():
    log = []
    scope = DisposalScope()
    scope.register(NativeHandle(_Native("first", log)))
    scope.defer(log.append, "deferred")
    scope.register(NativeHandle(_Native("last", log)))
    scope.close()
    assert log == ["last", "deferred", "first"]


def test_local_gc_cleanup_is_reusable():
    log = []
    register, cleanup, tracked = local_gc(debug=True)
    register(NativeHandle(_Native("a", log)))
    register(NativeHandle(_Native("b", log)))
    assert len(tracked) == 2

    assert cleanup().is_ok
    assert log == ["b", "a"]
    assert tracked == []

    register(NativeHandle(_Native("c", log)))
    cleanup()
    assert log == ["b", "a", "c"]


def test_local_gc_without_debug_has_no_tracking():
    _, cleanup, tracked = local_gc()
    assert tracked is None
    assert cleanup().is_ok


class _ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_failed_release_is_logged_as_warning_by_close():
    logger = logging.getLogger("brepbridge.test.scope.warn")
    logger.handlers = []
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    sink = _ListHandler()
    logger.addHandler(sink)

    scope = DisposalScope(name="noisy", logger=logger)
    scope.register(NativeHandle(_Native("bad", [], fail=True)))
    scope.close()

    warnings = [r for r in sink.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "noisy" in warnings[0].getMessage()
    assert "bad" in warnings[0].getMessage()
