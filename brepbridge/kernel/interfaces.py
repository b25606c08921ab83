from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, Tuple

import numpy as np

from .models import CapabilityReport


class NativeObject(Protocol):
    """Opaque reference into kernel memory; must be freed with ``delete()``."""

    def delete(self) -> None:
        ...


class GeometryKernel(Protocol):
    """Operations the bridge consumes from a native geometry kernel.

    Entry points flagged as optional in ``capabilities`` (``fuse_all_batch``,
    ``cut_all_batch``, ``general_fuse``, ``mesh_bulk``, ``mesh_edges_bulk``)
    may be absent; callers probe before use.
    """

    @property
    def capabilities(self) -> CapabilityReport:
        ...

    def create_primitive(self, kind: str, params: Mapping[str, Any]) -> NativeObject:
        ...

    def fuse(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> NativeObject:
        ...

    def cut(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> NativeObject:
        ...

    def common(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> NativeObject:
        ...

    def make_compound(self, shapes: Sequence[Any]) -> NativeObject:
        ...

    def shape_type(self, shape: Any) -> str:
        ...

    def is_null(self, shape: Any) -> bool:
        ...

    def volume(self, shape: Any) -> float:
        ...

    def hash_code(self, shape: Any, upper: int) -> int:
        ...

    def faces(self, shape: Any) -> Sequence[NativeObject]:
        ...

    def edges(self, shape: Any) -> Sequence[NativeObject]:
        ...

    def face_triangulation(
        self, face: Any, tolerance: float, angular_tolerance: float, skip_normals: bool = False
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        ...

    def edge_polyline(self, edge: Any, tolerance: float, angular_tolerance: float) -> np.ndarray:
        ...

    def write_file(self, name: str, data: bytes) -> None:
        ...

    def read_file(self, name: str) -> bytes:
        ...

    def unlink(self, name: str) -> None:
        ...

    def exists(self, name: str) -> bool:
        ...

    def write_shape(self, shape: Any, name: str, fmt: str) -> bool:
        ...

    def read_shape(self, name: str, fmt: str) -> NativeObject:
        ...

    def close(self) -> None:
        ...
