from __future__ import annotations

import logging
import threading
import weakref
from typing import Any, Callable, ClassVar, Generic, Optional, TypeVar

from ..kernel.models import DisposedHandleError, validation_error
from .finalizer import ReleaseState, SafetyNet, default_safety_net

T = TypeVar("T")

_log = logging.getLogger(__name__)


class NativeHandle(Generic[T]):
    """Owns one native reference.

    ``release()`` frees the native side exactly once; repeated calls are
    no-ops. Reading ``value`` after release raises ``DisposedHandleError``.
    """

    _adopted: ClassVar["weakref.WeakValueDictionary[int, NativeHandle]"] = weakref.WeakValueDictionary()
    _adopt_lock: ClassVar[threading.RLock] = threading.RLock()

    def __init__(
        self,
        value: T,
        *,
        deleter: Callable[[T], None] | None = None,
        watch: bool = True,
        net: Optional[SafetyNet] = None,
        label: str = "",
    ):
        if value is None:
            raise validation_error("NULL_NATIVE", "Cannot wrap a null native reference")
        if isinstance(value, NativeHandle):
            raise validation_error("NESTED_HANDLE", "Native handles cannot wrap other handles")
        self._state = ReleaseState(value, deleter, label=label)
        self._finalizer = (net or default_safety_net()).watch(self, self._state) if watch else None
        self._claim(value)

    def _claim(self, native: Any) -> None:
        # The first live owner of a native stays canonical for adopt().
        with self._adopt_lock:
            current = self._adopted.get(id(native))
            if current is None or current._state.native is not native:
                self._adopted[id(native)] = self

    @classmethod
    def adopt(cls, native: Any, **kwargs: Any) -> "NativeHandle":
        """Canonical handle for a raw native reference.

        Every caller adopting the same live object gets the same handle,
        including one built directly with ``NativeHandle(native)``, so
        registering a raw reference in several scopes still frees it once.
        """
        if isinstance(native, NativeHandle):
            return native
        with cls._adopt_lock:
            handle = cls._adopted.get(id(native))
            if handle is not None and handle._state.native is native:
                return handle
            return cls(native, **kwargs)

    @property
    def value(self) -> T:
        if self._state.released:
            raise DisposedHandleError(
                f"{self._state.label} handle has been disposed",
                details={"label": self._state.label},
            )
        return self._state.native

    @property
    def disposed(self) -> bool:
        return bool(self._state.released)

    @property
    def label(self) -> str:
        return self._state.label

    def release(self) -> None:
        if self._finalizer is not None:
            self._finalizer.detach()
        if self._state.release():
            _log.debug("Released native %s", self._state.label)

    delete = release

    def __enter__(self) -> "NativeHandle[T]":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False

    def __repr__(self) -> str:
        status = "disposed" if self.disposed else "live"
        return f"<NativeHandle {self._state.label} {status}>"


def unwrap(shape: Any) -> Any:
    """Return the raw native reference behind a handle (or the value itself)."""
    if isinstance(shape, NativeHandle):
        return shape.value
    return shape
