from __future__ import annotations

import gc
import logging

import pytest

from brepbridge.memory import NativeHandle, ReleaseState, SafetyNet, gc_with_object


pytestmark = pytest.mark.kernel


class _Native:
    def __init__(self, fail=False):
        self.deletes = 0
        self.fail = fail

    def delete(self):
        self.deletes += 1
        if self.fail:
            raise RuntimeError("native refused")


class _Owner:
    pass


def _quiet_logger(name):
    log = logging.getLogger(name)
    log.handlers = []
    log.propagate = False
    return log


def test_leaked_handle_is_released_once_by_the_net():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.leak"))
    native = _Native()
    handle = NativeHandle(native, net=net)
    del handle
    gc.collect()

    assert native.deletes == 1
    assert net.stats()["reclaimed"] == 1


def test_explicit_release_detaches_the_net():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.explicit"))
    native = _Native()
    handle = NativeHandle(native, net=net)
    handle.release()
    del handle
    gc.collect()

    assert native.deletes == 1
    assert net.stats()["reclaimed"] == 0


def test_disabled_net_does_not_watch():
    net = SafetyNet(enabled=False)
    native = _Native()
    handle = NativeHandle(native, net=net)
    del handle
    gc.collect()

    assert native.deletes == 0
    assert net.stats()["watched"] == 0


def test_finalizer_failures_are_counted_not_raised():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.fail"))
    native = _Native(fail=True)
    handle = NativeHandle(native, net=net)
    del handle
    gc.collect()

    stats = net.stats()
    assert stats["failures"] == 1
    assert stats["reclaimed"] == 0


def test_release_state_runs_deleter_once():
    native = _Native()
    state = ReleaseState(native)
    assert state.release() is True
    assert state.release() is False
    assert native.deletes == 1
    assert state.released


def test_register_for_cleanup_ties_release_to_owner():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.owner"))
    owner = _Owner()
    native = _Native()
    net.register_for_cleanup(owner, native)
    assert net.stats()["pending_cleanups"] == 1

    del owner
    gc.collect()

    assert native.deletes == 1
    assert net.stats()["pending_cleanups"] == 0


def test_unregister_from_cleanup_prevents_release():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.unregister"))
    owner = _Owner()
    native = _Native()
    net.register_for_cleanup(owner, native)

    assert net.unregister_from_cleanup(native) is True
    assert net.unregister_from_cleanup(native) is False
    del owner
    gc.collect()

    assert native.deletes == 0


def test_unregister_detaches_every_owner_of_a_shared_native():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.shared"))
    first, second = _Owner(), _Owner()
    native = _Native()
    net.register_for_cleanup(first, native)
    net.register_for_cleanup(second, native)
    assert net.stats()["pending_cleanups"] == 1

    assert net.unregister_from_cleanup(native) is True
    native.delete()
    del first, second
    gc.collect()

    assert native.deletes == 1
    assert net.stats()["reclaimed"] == 0


def test_shared_native_is_released_once_across_owners():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.owners"))
    first, second = _Owner(), _Owner()
    native = _Native()
    net.register_for_cleanup(first, native)
    net.register_for_cleanup(second, native)

    del first
    gc.collect()
    assert native.deletes == 1
    assert net.stats()["pending_cleanups"] == 1

    del second
    gc.collect()
    assert native.deletes == 1
    assert net.stats()["pending_cleanups"] == 0


def test_gc_with_object_ties_values_to_the_owner():
    net = SafetyNet(enabled=True, logger=_quiet_logger("brepbridge.test.net.gcwith"))
    owner = _Owner()
    register = gc_with_object(owner, net=net)
    a, b = _Native(), _Native()

    assert register(a) is a
    assert register(b) is b
    assert a.deletes == 0 and b.deletes == 0

    del owner
    gc.collect()

    assert (a.deletes, b.deletes) == (1, 1)
    assert net.stats()["reclaimed"] == 2
