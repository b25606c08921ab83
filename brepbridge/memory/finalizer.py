"""Best-effort safety net for native references that were never released.

Python's collector knows nothing about native memory held behind a
wrapper, so the primary contract is always an explicit release (a
``NativeHandle.release()`` or a closing ``DisposalScope``). The net only
bounds leakage when that contract is broken: it attaches a
``weakref.finalize`` to the wrapper and, if the wrapper is collected
while still live, releases the native reference on the collector's
schedule. That schedule is arbitrary; finalizers may run late or, with
``BREP_SAFETY_NET_ATEXIT=0`` (the default), not at all at interpreter
exit. Never rely on it to bound peak memory.
"""

from __future__ import annotations

import logging
import threading
import weakref
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import SAFETY_NET_ATEXIT, SAFETY_NET_ENABLED
from ..kernel.models import validation_error


_log = logging.getLogger(__name__)


def delete_native(native: Any) -> None:
    native.delete()


class ReleaseState:
    """Release bookkeeping shared by a wrapper and its finalizer.

    It never references the wrapper itself, otherwise the finalizer
    would keep the wrapper alive forever. The native reference is kept
    after release so its ``id`` cannot be recycled while the state lives.
    """

    __slots__ = ("native", "deleter", "released", "label", "_lock")

    def __init__(self, native: Any, deleter: Callable[[Any], None] | None = None, label: str = ""):
        self.native = native
        self.deleter = deleter or delete_native
        self.released = False
        self.label = str(label or type(native).__name__)
        self._lock = threading.Lock()

    def release(self) -> bool:
        """Run the deleter once. Returns True only for the call that did it."""
        with self._lock:
            if self.released:
                return False
            self.released = True
        self.deleter(self.native)
        return True


class SafetyNet:
    def __init__(
        self,
        *,
        enabled: bool = SAFETY_NET_ENABLED,
        run_at_exit: bool = SAFETY_NET_ATEXIT,
        logger: Optional[logging.Logger] = None,
    ):
        self.enabled = bool(enabled)
        self.run_at_exit = bool(run_at_exit)
        self.logger = logger or _log
        self._lock = threading.Lock()
        self._watched = 0
        self._reclaimed = 0
        self._failures = 0
        self._by_deletable: Dict[int, Tuple[Any, ReleaseState, List[weakref.finalize]]] = {}

    def watch(self, owner: Any, state: ReleaseState) -> Optional[weakref.finalize]:
        if not self.enabled:
            return None
        fin = weakref.finalize(owner, self._on_collect, state)
        fin.atexit = self.run_at_exit
        with self._lock:
            self._watched += 1
        return fin

    def _on_collect(self, state: ReleaseState) -> None:
        try:
            performed = state.release()
        except Exception as exc:
            with self._lock:
                self._failures += 1
            self.logger.warning("Safety net failed to release leaked %s: %s", state.label, exc)
            return
        if performed:
            with self._lock:
                self._reclaimed += 1
            self.logger.warning("Safety net released a leaked %s; release it explicitly instead", state.label)

    def register_for_cleanup(self, owner: Any, deletable: Any) -> Optional[weakref.finalize]:
        """Release ``deletable`` when ``owner`` is collected.

        One deletable may be tied to several owners; the first collection
        frees it and the others find it already released.
        """
        key = id(deletable)
        with self._lock:
            row = self._by_deletable.get(key)
            state = row[1] if row is not None and row[0] is deletable else ReleaseState(deletable)
        fin = self.watch(owner, state)
        if fin is None:
            return None

        def _forget(_ref=None, key=key, fin=fin) -> None:
            with self._lock:
                current = self._by_deletable.get(key)
                if current is None or fin not in current[2]:
                    return
                current[2].remove(fin)
                if not current[2]:
                    del self._by_deletable[key]

        with self._lock:
            row = self._by_deletable.setdefault(key, (deletable, state, []))
            row[2].append(fin)
        weakref.finalize(owner, _forget).atexit = False
        return fin

    def unregister_from_cleanup(self, deletable: Any) -> bool:
        """Detach every registration; call before deleting ``deletable`` manually."""
        with self._lock:
            row = self._by_deletable.get(id(deletable))
            if row is None or row[0] is not deletable:
                return False
            del self._by_deletable[id(deletable)]
        for fin in row[2]:
            fin.detach()
        return True

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "watched": int(self._watched),
                "reclaimed": int(self._reclaimed),
                "failures": int(self._failures),
                "pending_cleanups": len(self._by_deletable),
            }


_DEFAULT_NET = SafetyNet()


def default_safety_net() -> SafetyNet:
    return _DEFAULT_NET


def register_for_cleanup(owner: Any, deletable: Any) -> Optional[weakref.finalize]:
    return _DEFAULT_NET.register_for_cleanup(owner, deletable)


def unregister_from_cleanup(deletable: Any) -> bool:
    return _DEFAULT_NET.unregister_from_cleanup(deletable)


def gc_with_object(obj: Any, net: Optional[SafetyNet] = None) -> Callable[[Any], Any]:
    """Return a registrar tying each value's release to ``obj``'s lifetime."""
    target = net or _DEFAULT_NET
    owner_ref = weakref.ref(obj)

    def register(value: Any) -> Any:
        owner = owner_ref()
        if owner is None:
            raise validation_error("CLEANUP_OWNER_GONE", "The cleanup owner has already been collected")
        target.register_for_cleanup(owner, value)
        return value

    return register
