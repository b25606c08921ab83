"""Identity-keyed cache for derived mesh data.

The outer key is the native object itself, never a kernel hash code:
hash codes are bounded and distinct shapes can share one. Entries are
looked up by ``id(native)`` and the id is pinned by a weak reference, so
it cannot be recycled while an entry exists and entries drop out when
the native object is collected. Natives that cannot be weakly referenced
are pinned with a strong reference until invalidated or evicted.

One LRU order spans every shape, bounded by ``max_size`` entries.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Set, Tuple, TypeVar

from .. import config
from ..kernel.models import validation_error
from ..memory import unwrap

V = TypeVar("V")

_log = logging.getLogger(__name__)


def build_mesh_cache_key(tolerance: float, angular_tolerance: float, skip_normals: bool = False) -> str:
    return f"mesh|tol={float(tolerance)!r}|ang={float(angular_tolerance)!r}|normals={0 if skip_normals else 1}"


def build_edge_mesh_cache_key(tolerance: float, angular_tolerance: float) -> str:
    return f"edges|tol={float(tolerance)!r}|ang={float(angular_tolerance)!r}"


class _StrongRef:
    __slots__ = ("obj",)

    def __init__(self, obj: Any):
        self.obj = obj

    def __call__(self) -> Any:
        return self.obj


class MeshCache:
    def __init__(self, max_size: int = config.MESH_CACHE_SIZE, logger: Optional[logging.Logger] = None):
        if int(max_size) < 1:
            raise validation_error("INVALID_CACHE_SIZE", f"Cache size must be >= 1, got {max_size}")
        self.logger = logger or _log
        self._max_size = int(max_size)
        self._lock = threading.RLock()
        self._entries: "OrderedDict[Tuple[int, str], Any]" = OrderedDict()
        self._anchors: Dict[int, Any] = {}
        self._keys: Dict[int, Set[str]] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    def _reaper(self, ident: int) -> Callable[[Any], None]:
        cache_ref = weakref.ref(self)

        def _reap(ref: Any) -> None:
            cache = cache_ref()
            if cache is None:
                return
            with cache._lock:
                if cache._anchors.get(ident) is ref:
                    cache._drop_identity(ident)

        return _reap

    def _live_ident(self, native: Any) -> Optional[int]:
        ident = id(native)
        anchor = self._anchors.get(ident)
        if anchor is None:
            return None
        if anchor() is not native:
            self._drop_identity(ident)
            return None
        return ident

    def _pin(self, native: Any) -> int:
        ident = self._live_ident(native)
        if ident is not None:
            return ident
        ident = id(native)
        try:
            anchor: Any = weakref.ref(native, self._reaper(ident))
        except TypeError:
            anchor = _StrongRef(native)
        self._anchors[ident] = anchor
        self._keys[ident] = set()
        return ident

    def _drop_identity(self, ident: int) -> int:
        keys = self._keys.pop(ident, set())
        self._anchors.pop(ident, None)
        for key in keys:
            self._entries.pop((ident, key), None)
        return len(keys)

    def _evict_overflow(self) -> None:
        while len(self._entries) > self._max_size:
            (ident, key), _ = self._entries.popitem(last=False)
            self._evictions += 1
            keys = self._keys.get(ident)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    self._keys.pop(ident, None)
                    self._anchors.pop(ident, None)

    def get(self, shape: Any, key: str) -> Optional[Any]:
        native = unwrap(shape)
        with self._lock:
            ident = self._live_ident(native)
            if ident is None or (ident, key) not in self._entries:
                self._misses += 1
                return None
            self._entries.move_to_end((ident, key))
            self._hits += 1
            return self._entries[(ident, key)]

    def put(self, shape: Any, key: str, value: V) -> V:
        native = unwrap(shape)
        with self._lock:
            ident = self._pin(native)
            self._entries[(ident, key)] = value
            self._entries.move_to_end((ident, key))
            self._keys[ident].add(key)
            self._evict_overflow()
        return value

    def get_or_compute(self, shape: Any, key: str, compute: Callable[[], V]) -> V:
        cached = self.get(shape, key)
        if cached is not None:
            return cached
        return self.put(shape, key, compute())

    def invalidate(self, shape: Any) -> int:
        """Drop every entry of ``shape``; returns how many were removed."""
        native = unwrap(shape)
        with self._lock:
            ident = self._live_ident(native)
            if ident is None:
                return 0
            return self._drop_identity(ident)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._anchors.clear()
            self._keys.clear()

    def resize(self, max_size: int) -> None:
        if int(max_size) < 1:
            raise validation_error("INVALID_CACHE_SIZE", f"Cache size must be >= 1, got {max_size}")
        with self._lock:
            self._max_size = int(max_size)
            self._evict_overflow()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_size": int(self._max_size),
                "shapes": len(self._anchors),
                "hits": int(self._hits),
                "misses": int(self._misses),
                "evictions": int(self._evictions),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, shape: Any) -> bool:
        native = unwrap(shape)
        with self._lock:
            ident = self._live_ident(native)
            return ident is not None and bool(self._keys.get(ident))


_DEFAULT_LOCK = threading.Lock()
_DEFAULT_CACHE: Optional[MeshCache] = None


def default_mesh_cache() -> MeshCache:
    """Process-wide cache used when callers pass no cache of their own."""
    global _DEFAULT_CACHE
    with _DEFAULT_LOCK:
        if _DEFAULT_CACHE is None:
            _DEFAULT_CACHE = MeshCache()
        return _DEFAULT_CACHE


def create_mesh_cache(max_size: Optional[int] = None) -> MeshCache:
    return MeshCache(max_size=config.MESH_CACHE_SIZE if max_size is None else int(max_size))


def clear_mesh_cache() -> None:
    default_mesh_cache().clear()


def set_mesh_cache_size(max_size: int) -> None:
    default_mesh_cache().resize(max_size)
