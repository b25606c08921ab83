from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from ..kernel.models import ErrorKind, KernelError, Result, err, ok, validation_error
from .handle import NativeHandle

R = TypeVar("R")

_log = logging.getLogger(__name__)


class DisposalScope:
    """Ordered registry of resources released together, last in first out.

    A scope belongs to one unit of work. Every registered resource is
    released exactly once when the scope closes, whatever way the body
    exits. A failing release does not stop the others; the first failure
    is reported through the ``Result`` returned by ``close()``.
    """

    def __init__(self, name: str = "", logger: Optional[logging.Logger] = None):
        self.name = str(name or "scope")
        self.logger = logger or _log
        self._entries: List[Tuple[str, Callable[[], Any]]] = []
        self._closed = False
        self._registered = 0
        self._released = 0
        self.errors: List[BaseException] = []
        self.last_close_result: Optional[Result[None]] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._entries)

    def _ensure_open(self) -> None:
        if self._closed:
            raise KernelError(
                f"Scope '{self.name}' is already closed",
                code="SCOPE_CLOSED",
                kind=ErrorKind.DISPOSAL,
            )

    def register(self, resource: R) -> R:
        """Register a handle, a releasable or a raw native object; return it unchanged."""
        self._ensure_open()
        if resource is None:
            raise validation_error("SCOPE_NULL_RESOURCE", "Cannot register None in a disposal scope")
        if isinstance(resource, NativeHandle):
            releaser = resource.release
            label = resource.label
        elif callable(getattr(resource, "release", None)):
            releaser = resource.release
            label = type(resource).__name__
        elif callable(getattr(resource, "delete", None)):
            releaser = NativeHandle.adopt(resource).release
            label = type(resource).__name__
        else:
            raise validation_error(
                "SCOPE_NOT_DISPOSABLE",
                f"{type(resource).__name__} has neither release() nor delete()",
            )
        self._entries.append((label, releaser))
        self._registered += 1
        return resource

    def defer(self, callback: Callable[..., Any], *args: Any, **kwargs: Any) -> Callable[..., Any]:
        """Run ``callback(*args, **kwargs)`` at close, in the same LIFO order."""
        self._ensure_open()
        self._entries.append((getattr(callback, "__name__", "callback"), lambda: callback(*args, **kwargs)))
        self._registered += 1
        return callback

    def close(self) -> Result[None]:
        if self._closed:
            return self.last_close_result or ok()
        self._closed = True

        failures: List[Tuple[str, BaseException]] = []
        while self._entries:
            label, releaser = self._entries.pop()
            try:
                releaser()
            except Exception as exc:
                failures.append((label, exc))
                self.logger.debug("Release of %s in scope '%s' failed: %s", label, self.name, exc)
            self._released += 1

        self.errors = [exc for _, exc in failures]
        if failures:
            first_label, first_exc = failures[0]
            self.last_close_result = err(
                KernelError(
                    f"Scope '{self.name}' failed to release {len(failures)} resource(s); first: {first_label}: {first_exc}",
                    code="SCOPE_RELEASE_FAILED",
                    kind=ErrorKind.DISPOSAL,
                    details={
                        "scope": self.name,
                        "failed": len(failures),
                        "released": self._released,
                        "errors": [f"{label}: {type(exc).__name__}: {exc}" for label, exc in failures],
                    },
                    cause=first_exc,
                )
            )
            self.logger.warning("%s", self.last_close_result.error)
        else:
            self.last_close_result = ok()
        return self.last_close_result

    def stats(self) -> Dict[str, int]:
        return {
            "registered": int(self._registered),
            "released": int(self._released),
            "pending": len(self._entries),
            "failed": len(self.errors),
        }

    def __enter__(self) -> "DisposalScope":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False


def with_scope(body: Callable[[DisposalScope], R], *, name: str = "") -> R:
    """Run ``body`` with a fresh scope and close it on return or raise.

    The return value must not be registered in the scope if it is meant
    to outlive the call.
    """
    with DisposalScope(name=name or getattr(body, "__name__", "")) as scope:
        return body(scope)


def local_gc(debug: bool = False) -> Tuple[Callable[[R], R], Callable[[], Result[None]], Optional[List[Any]]]:
    """Function-style scope: ``(register, cleanup, tracked)``.

    ``cleanup`` releases everything registered so far and leaves the
    registrar usable for a new batch.
    """
    holder = {"scope": DisposalScope(name="local_gc")}
    tracked: Optional[List[Any]] = [] if debug else None

    def register(value: R) -> R:
        holder["scope"].register(value)
        if tracked is not None:
            tracked.append(value)
        return value

    def cleanup() -> Result[None]:
        scope = holder["scope"]
        holder["scope"] = DisposalScope(name="local_gc")
        if tracked is not None:
            tracked.clear()
        return scope.close()

    return register, cleanup, tracked
