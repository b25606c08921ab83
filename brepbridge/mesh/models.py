from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Tuple

import numpy as np


def _frozen(arr: Any, dtype: Any, width: int) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True)
    out = out.reshape(-1, width) if out.size else np.zeros((0, width), dtype=dtype)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class FaceGroup:
    """Triangles ``[start, start + count)`` belong to the face ``face_id``."""

    start: int
    count: int
    face_id: int


@dataclass(frozen=True)
class EdgeGroup:
    start: int
    count: int
    edge_id: int


@dataclass(frozen=True, eq=False)
class ShapeMesh:
    vertices: np.ndarray
    normals: np.ndarray
    triangles: np.ndarray
    face_groups: Tuple[FaceGroup, ...] = ()
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, vertices: Any, normals: Any, triangles: Any, face_groups: Any = (), **meta: Any) -> "ShapeMesh":
        return cls(
            vertices=_frozen(vertices, np.float32, 3),
            normals=_frozen(normals, np.float32, 3),
            triangles=_frozen(triangles, np.uint32, 3),
            face_groups=tuple(FaceGroup(int(s), int(c), int(f)) for s, c, f in face_groups),
            meta=dict(meta),
        )

    @property
    def vertex_count(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def triangle_count(self) -> int:
        return int(self.triangles.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vertices": self.vertices.tolist(),
            "normals": self.normals.tolist(),
            "triangles": self.triangles.tolist(),
            "face_groups": [[g.start, g.count, g.face_id] for g in self.face_groups],
            "meta": dict(self.meta),
        }

    def to_polydata(self) -> Any:
        """Export as ``pyvista.PolyData`` (needs the ``viz`` extra)."""
        import pyvista as pv

        cells = np.hstack(
            [np.full((self.triangle_count, 1), 3, dtype=np.int64), self.triangles.astype(np.int64)]
        ).reshape(-1)
        poly = pv.PolyData(np.asarray(self.vertices, dtype=np.float32), faces=cells)
        if self.normals.shape[0] == self.vertex_count and self.vertex_count:
            poly.point_data["Normals"] = np.asarray(self.normals)
        face_ids = np.zeros(self.triangle_count, dtype=np.int64)
        for group in self.face_groups:
            face_ids[group.start : group.start + group.count] = group.face_id
        poly.cell_data["face_id"] = face_ids
        return poly


@dataclass(frozen=True, eq=False)
class EdgeMesh:
    lines: np.ndarray
    edge_groups: Tuple[EdgeGroup, ...] = ()
    meta: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, lines: Any, edge_groups: Any = (), **meta: Any) -> "EdgeMesh":
        arr = np.array(lines, dtype=np.float32, copy=True)
        arr = arr.reshape(-1, 2, 3) if arr.size else np.zeros((0, 2, 3), dtype=np.float32)
        arr.setflags(write=False)
        return cls(
            lines=arr,
            edge_groups=tuple(EdgeGroup(int(s), int(c), int(e)) for s, c, e in edge_groups),
            meta=dict(meta),
        )

    @property
    def segment_count(self) -> int:
        return int(self.lines.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lines": self.lines.tolist(),
            "edge_groups": [[g.start, g.count, g.edge_id] for g in self.edge_groups],
            "meta": dict(self.meta),
        }

    def to_polydata(self) -> Any:
        import pyvista as pv

        n = self.segment_count
        points = np.asarray(self.lines, dtype=np.float32).reshape(-1, 3)
        idx = np.arange(2 * n, dtype=np.int64).reshape(n, 2)
        cells = np.hstack([np.full((n, 1), 2, dtype=np.int64), idx]).reshape(-1)
        return pv.PolyData(points, lines=cells)
