"""Pure-numpy reference kernel.

Solids are axis-aligned cell complexes: three sorted coordinate arrays
and a boolean occupancy grid over the cells they span. Booleans resample
both operands on the merged coordinates, so results and volumes are
exact for box-built shapes. Every object handed out lives on a simulated
native heap and must be freed with ``delete()``; freeing twice or using a
freed object raises, which is what lets the bridge's ownership rules be
tested without a compiled kernel.
"""

from __future__ import annotations

import itertools
import json
import logging
import threading
import zlib
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Sequence, Tuple

import numpy as np

from ..models import CapabilityReport, KernelError, io_error, kernel_error, validation_error

_ROUND = 9
_GLUE_MODES = ("none", "common_face", "same_face")


def _safe_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


@dataclass
class _Grid:
    xs: np.ndarray
    ys: np.ndarray
    zs: np.ndarray
    occ: np.ndarray

    @staticmethod
    def empty() -> "_Grid":
        zero = np.zeros(1, dtype=float)
        return _Grid(zero, zero.copy(), zero.copy(), np.zeros((0, 0, 0), dtype=bool))

    @staticmethod
    def box(lo: Sequence[float], hi: Sequence[float]) -> "_Grid":
        axes = [np.round(np.array([float(a), float(b)]), _ROUND) for a, b in zip(lo, hi)]
        return _Grid(axes[0], axes[1], axes[2], np.ones((1, 1, 1), dtype=bool))

    @property
    def axes(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        return self.xs, self.ys, self.zs

    @property
    def is_empty(self) -> bool:
        return not bool(self.occ.any())

    def copy(self) -> "_Grid":
        return _Grid(self.xs.copy(), self.ys.copy(), self.zs.copy(), self.occ.copy())

    def volume(self) -> float:
        if self.is_empty:
            return 0.0
        dx, dy, dz = (np.diff(a) for a in self.axes)
        cells = dx[:, None, None] * dy[None, :, None] * dz[None, None, :]
        return float(np.sum(cells[self.occ]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "xs": self.xs.tolist(),
            "ys": self.ys.tolist(),
            "zs": self.zs.tolist(),
            "occ": self.occ.astype(int).tolist(),
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "_Grid":
        axes = [np.asarray(data[k], dtype=float).reshape(-1) for k in ("xs", "ys", "zs")]
        occ = np.asarray(data["occ"], dtype=bool)
        expected = tuple(max(0, len(a) - 1) for a in axes)
        if occ.size == 0:
            return _Grid.empty()
        if occ.shape != expected:
            raise ValueError(f"occupancy shape {occ.shape} does not match axes {expected}")
        return _Grid(axes[0], axes[1], axes[2], occ)


def _merge_axis(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.unique(np.round(np.concatenate([a, b]), _ROUND))


def _resample(grid: _Grid, axes: Sequence[np.ndarray]) -> np.ndarray:
    out = np.zeros(tuple(len(a) - 1 for a in axes), dtype=bool)
    if grid.is_empty or out.size == 0:
        return out
    sel = []
    src = []
    for new, old in zip(axes, grid.axes):
        centers = 0.5 * (new[:-1] + new[1:])
        idx = np.searchsorted(old, centers, side="right") - 1
        valid = np.nonzero((idx >= 0) & (idx < len(old) - 1))[0]
        sel.append(valid)
        src.append(idx[valid])
    out[np.ix_(*sel)] = grid.occ[np.ix_(*src)]
    return out


def _combine(a: _Grid, b: _Grid, op: str) -> _Grid:
    if op == "fuse":
        if a.is_empty:
            return b.copy()
        if b.is_empty:
            return a.copy()
    elif op == "cut":
        if a.is_empty:
            return _Grid.empty()
        if b.is_empty:
            return a.copy()
    elif a.is_empty or b.is_empty:
        return _Grid.empty()

    axes = tuple(_merge_axis(x, y) for x, y in zip(a.axes, b.axes))
    oa = _resample(a, axes)
    ob = _resample(b, axes)
    if op == "fuse":
        occ = oa | ob
    elif op == "cut":
        occ = oa & ~ob
    else:
        occ = oa & ob
    return _Grid(axes[0], axes[1], axes[2], occ)


def _simplified(grid: _Grid) -> _Grid:
    """Trim empty border slabs and merge identical neighbouring slabs."""
    if grid.is_empty:
        return _Grid.empty()
    axes = list(grid.axes)
    occ = grid.occ
    for ax in range(3):
        occ_m = np.moveaxis(occ, ax, 0)
        filled = np.nonzero(occ_m.reshape(occ_m.shape[0], -1).any(axis=1))[0]
        lo, hi = int(filled[0]), int(filled[-1])
        occ_m = occ_m[lo : hi + 1]
        coords = axes[ax][lo : hi + 2]
        keep = [0]
        for i in range(1, occ_m.shape[0]):
            if not np.array_equal(occ_m[i], occ_m[keep[-1]]):
                keep.append(i)
        axes[ax] = np.append(coords[keep], coords[-1])
        occ = np.moveaxis(occ_m[keep], 0, ax)
    return _Grid(axes[0], axes[1], axes[2], np.ascontiguousarray(occ))


def _boundary_faces(grid: _Grid) -> List[Tuple[int, int, int, np.ndarray]]:
    """Group boundary quads by (axis, normal sign, plane index)."""
    out: List[Tuple[int, int, int, np.ndarray]] = []
    if grid.is_empty:
        return out
    axes = grid.axes
    for ax in range(3):
        u, v = [a for a in range(3) if a != ax]
        occ_m = np.moveaxis(grid.occ, ax, 0)
        pad = np.zeros((occ_m.shape[0] + 2,) + occ_m.shape[1:], dtype=bool)
        pad[1:-1] = occ_m
        lower = pad[:-1]
        upper = pad[1:]
        parity = -1 if ax == 1 else 1
        for sign, mask in ((1, lower & ~upper), (-1, upper & ~lower)):
            planes = np.nonzero(mask.reshape(mask.shape[0], -1).any(axis=1))[0]
            for p in planes:
                ii, jj = np.nonzero(mask[p])
                quads = np.zeros((ii.size, 4, 3), dtype=float)
                quads[:, :, ax] = axes[ax][p]
                u0, u1 = axes[u][ii], axes[u][ii + 1]
                v0, v1 = axes[v][jj], axes[v][jj + 1]
                quads[:, :, u] = np.stack([u0, u1, u1, u0], axis=1)
                quads[:, :, v] = np.stack([v0, v0, v1, v1], axis=1)
                if sign * parity < 0:
                    quads = quads[:, [0, 3, 2, 1], :]
                out.append((ax, sign, int(p), quads))
    return out


def _outline_segments(quads: np.ndarray) -> Dict[Tuple[float, ...], np.ndarray]:
    counts: Counter = Counter()
    segs: Dict[Tuple[float, ...], np.ndarray] = {}
    for quad in quads:
        for i in range(4):
            a, b = quad[i], quad[(i + 1) % 4]
            key = tuple(sorted([tuple(np.round(a, _ROUND)), tuple(np.round(b, _ROUND))]))
            flat = key[0] + key[1]
            counts[flat] += 1
            segs[flat] = np.array([a, b], dtype=float)
    return {k: s for k, s in segs.items() if counts[k] == 1}


def _stable_hash(text: str) -> int:
    return int(zlib.crc32(text.encode("utf-8")))


class RefObject:
    """Base of every object living on the reference kernel's heap."""

    kind = "object"

    def __init__(self, kernel: "ReferenceKernel", serial: int, hash_seed: int | None = None):
        self._kernel = kernel
        self.serial = int(serial)
        self.hash_seed = int(serial if hash_seed is None else hash_seed)
        self.deleted = False

    def delete(self) -> None:
        self._kernel._free(self)

    def __repr__(self) -> str:
        state = "deleted" if self.deleted else "live"
        return f"<{type(self).__name__} #{self.serial} {state}>"


class RefShape(RefObject):
    kind = "shape"

    def __init__(self, kernel: "ReferenceKernel", serial: int, grid: _Grid, shape_type: str):
        super().__init__(kernel, serial)
        self.grid = grid
        self.shape_type = str(shape_type)


class RefFace(RefObject):
    kind = "face"

    def __init__(self, kernel: "ReferenceKernel", serial: int, quads: np.ndarray, normal: np.ndarray, hash_seed: int):
        super().__init__(kernel, serial, hash_seed)
        self.quads = quads
        self.normal = normal


class RefEdge(RefObject):
    kind = "edge"

    def __init__(self, kernel: "ReferenceKernel", serial: int, points: np.ndarray, hash_seed: int):
        super().__init__(kernel, serial, hash_seed)
        self.points = points


def _quad_triangles(quads: np.ndarray) -> np.ndarray:
    base = (np.arange(quads.shape[0], dtype=np.uint32) * 4)[:, None]
    tri = np.concatenate([base + np.array([0, 1, 2], dtype=np.uint32), base + np.array([0, 2, 3], dtype=np.uint32)], axis=1)
    return tri.reshape(-1, 3)


class ReferenceKernel:
    """In-process kernel with a simulated native heap.

    Optional entry points can be switched off to exercise the bridge's
    fallbacks; ``failing_ops`` names operations that raise on every call.
    ``calls`` counts every operation and ``journal`` records boolean calls
    with their simplify flag, in order.
    """

    def __init__(
        self,
        *,
        batch_booleans: bool = True,
        general_fuse: bool = True,
        bulk_mesh: bool = True,
        bulk_edge_mesh: bool = True,
        failing_ops: Iterable[str] = (),
        logger: logging.Logger | None = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()
        self._serials = itertools.count(1)
        self._heap: Dict[int, RefObject] = {}
        self._fs: Dict[str, bytes] = {}
        self.failing_ops = set(str(x) for x in failing_ops)
        self.calls: Counter = Counter()
        self.journal: List[Tuple[str, Dict[str, Any]]] = []
        self.allocations = 0
        self._caps = CapabilityReport(
            provider="reference",
            batch_booleans=bool(batch_booleans),
            general_fuse=bool(general_fuse),
            bulk_mesh=bool(bulk_mesh),
            bulk_edge_mesh=bool(bulk_edge_mesh),
            virtual_fs=True,
            import_formats=("bref",),
            export_formats=("bref", "stl"),
            primitive_kinds=("box", "cube"),
            glue_modes=_GLUE_MODES,
            notes=("numpy cell-complex reference kernel",),
        )

    @property
    def capabilities(self) -> CapabilityReport:
        return self._caps

    # -- heap ---------------------------------------------------------------

    def _alloc(self, factory, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            serial = next(self._serials)
            obj = factory(self, serial, *args, **kwargs)
            self._heap[serial] = obj
            self.allocations += 1
            return obj

    def _free(self, obj: RefObject) -> None:
        with self._lock:
            if obj.deleted:
                raise kernel_error("DOUBLE_FREE", f"{obj!r} was already deleted", serial=obj.serial)
            obj.deleted = True
            self._heap.pop(obj.serial, None)
            self.calls["delete"] += 1

    def _check(self, obj: Any, expected: type = RefShape) -> Any:
        if not isinstance(obj, expected) or obj._kernel is not self:
            raise validation_error(
                "INVALID_NATIVE",
                f"Expected a {expected.__name__} from this kernel, got {type(obj).__name__}",
            )
        if obj.deleted:
            raise kernel_error("USE_AFTER_FREE", f"{obj!r} used after delete", serial=obj.serial)
        return obj

    def _enter(self, op: str, **info: Any) -> None:
        self.calls[op] += 1
        if info:
            self.journal.append((op, dict(info)))
        if op in self.failing_ops:
            raise kernel_error(f"{op.upper()}_FAILED", f"Injected failure in {op}")

    def live_count(self) -> int:
        with self._lock:
            return len(self._heap)

    def live_objects(self) -> List[RefObject]:
        with self._lock:
            return list(self._heap.values())

    # -- construction -------------------------------------------------------

    def create_primitive(self, kind: str, params: Mapping[str, Any]) -> RefShape:
        token = str(kind or "").strip().lower()
        if token not in self._caps.primitive_kinds:
            raise validation_error("PRIMITIVE_NOT_SUPPORTED", f"Unsupported primitive kind: {token}", kind=token)
        self._enter("create_primitive")
        p = dict(params or {})
        if token == "cube":
            size = max(1e-9, _safe_float(p.get("size", 1.0), 1.0))
            dims = (size, size, size)
        else:
            dims = tuple(
                max(1e-9, _safe_float(p.get(name, 1.0), 1.0)) for name in ("width", "depth", "height")
            )
        if "origin" in p:
            lo = [float(v) for v in p["origin"]]
        else:
            center = [float(v) for v in p.get("center", (0.0, 0.0, 0.0))]
            lo = [c - d * 0.5 for c, d in zip(center, dims)]
        hi = [a + d for a, d in zip(lo, dims)]
        return self._alloc(RefShape, _Grid.box(lo, hi), "solid")

    def _result(self, grid: _Grid, simplify: bool) -> RefShape:
        if simplify:
            self.calls["simplify"] += 1
            grid = _simplified(grid)
        return self._alloc(RefShape, grid, "compound" if grid.is_empty else "solid")

    def _check_glue(self, glue: str) -> str:
        token = str(glue or "none")
        if token not in _GLUE_MODES:
            raise validation_error("INVALID_GLUE", f"Unsupported glue mode: {token}", glue=token)
        return token

    # -- booleans -----------------------------------------------------------

    def _binary(self, op: str, a: Any, b: Any, glue: str, simplify: bool) -> RefShape:
        self._check(a)
        self._check(b)
        self._enter(op, glue=self._check_glue(glue), simplify=bool(simplify))
        return self._result(_combine(a.grid, b.grid, op), simplify)

    def fuse(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> RefShape:
        return self._binary("fuse", a, b, glue, simplify)

    def cut(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> RefShape:
        return self._binary("cut", a, b, glue, simplify)

    def common(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> RefShape:
        return self._binary("common", a, b, glue, simplify)

    def _union_all(self, shapes: Sequence[Any]) -> _Grid:
        grid = _Grid.empty()
        for s in shapes:
            grid = _combine(grid, self._check(s).grid, "fuse")
        return grid

    def general_fuse(self, shapes: Sequence[Any], *, glue: str = "none", simplify: bool = False) -> RefShape:
        if not self._caps.general_fuse:
            raise kernel_error("GENERAL_FUSE_UNAVAILABLE", "General fuse is disabled on this kernel")
        for s in shapes:
            self._check(s)
        self._enter("general_fuse", glue=self._check_glue(glue), simplify=bool(simplify), count=len(shapes))
        return self._result(self._union_all(shapes), simplify)

    def fuse_all_batch(self, shapes: Sequence[Any], *, glue: str = "none", simplify: bool = False) -> RefShape:
        if not self._caps.batch_booleans:
            raise kernel_error("BATCH_UNAVAILABLE", "Batch booleans are disabled on this kernel")
        for s in shapes:
            self._check(s)
        self._enter("fuse_all_batch", glue=self._check_glue(glue), simplify=bool(simplify), count=len(shapes))
        return self._result(self._union_all(shapes), simplify)

    def cut_all_batch(self, base: Any, tools: Sequence[Any], *, glue: str = "none", simplify: bool = False) -> RefShape:
        if not self._caps.batch_booleans:
            raise kernel_error("BATCH_UNAVAILABLE", "Batch booleans are disabled on this kernel")
        self._check(base)
        for t in tools:
            self._check(t)
        self._enter("cut_all_batch", glue=self._check_glue(glue), simplify=bool(simplify), count=len(tools))
        return self._result(_combine(base.grid, self._union_all(tools), "cut"), simplify)

    def make_compound(self, shapes: Sequence[Any]) -> RefShape:
        for s in shapes:
            self._check(s)
        self._enter("make_compound")
        return self._alloc(RefShape, self._union_all(shapes), "compound")

    # -- queries ------------------------------------------------------------

    def shape_type(self, shape: Any) -> str:
        return str(self._check(shape).shape_type)

    def is_null(self, shape: Any) -> bool:
        return shape is None

    def volume(self, shape: Any) -> float:
        return self._check(shape).grid.volume()

    def hash_code(self, shape: Any, upper: int) -> int:
        obj = self._check(shape, RefObject)
        bound = int(upper)
        if bound < 1:
            raise validation_error("INVALID_HASH_BOUND", f"Hash upper bound must be >= 1, got {bound}")
        return int(obj.hash_seed % bound)

    def _face_rows(self, shape: RefShape) -> List[Tuple[np.ndarray, np.ndarray, int]]:
        rows = []
        for ax, sign, p, quads in _boundary_faces(shape.grid):
            normal = np.zeros(3, dtype=float)
            normal[ax] = float(sign)
            rows.append((quads, normal, _stable_hash(f"{shape.serial}:{ax}:{sign}:{p}")))
        return rows

    def _edge_rows(self, shape: RefShape) -> List[Tuple[np.ndarray, int]]:
        merged: Dict[Tuple[float, ...], np.ndarray] = {}
        for _, _, _, quads in _boundary_faces(shape.grid):
            merged.update(_outline_segments(quads))
        return [
            (merged[key], _stable_hash(f"{shape.serial}:" + ",".join(f"{x:.9f}" for x in key)))
            for key in sorted(merged)
        ]

    def faces(self, shape: Any) -> List[RefFace]:
        self._check(shape)
        self._enter("faces")
        return [self._alloc(RefFace, quads, normal, seed) for quads, normal, seed in self._face_rows(shape)]

    def edges(self, shape: Any) -> List[RefEdge]:
        self._check(shape)
        self._enter("edges")
        return [self._alloc(RefEdge, pts, seed) for pts, seed in self._edge_rows(shape)]

    # -- meshing ------------------------------------------------------------

    def face_triangulation(
        self, face: Any, tolerance: float, angular_tolerance: float, skip_normals: bool = False
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        self._check(face, RefFace)
        self._enter("face_triangulation")
        vertices = face.quads.reshape(-1, 3).astype(np.float32)
        triangles = _quad_triangles(face.quads)
        if skip_normals:
            normals = np.zeros((0, 3), dtype=np.float32)
        else:
            normals = np.tile(face.normal.astype(np.float32), (vertices.shape[0], 1))
        return vertices, normals, triangles

    def edge_polyline(self, edge: Any, tolerance: float, angular_tolerance: float) -> np.ndarray:
        self._check(edge, RefEdge)
        self._enter("edge_polyline")
        return edge.points.astype(np.float32)

    def mesh_bulk(self, shape: Any, tolerance: float, angular_tolerance: float, skip_normals: bool = False) -> Dict[str, Any]:
        if not self._caps.bulk_mesh:
            raise kernel_error("BULK_MESH_UNAVAILABLE", "Bulk meshing is disabled on this kernel")
        self._check(shape)
        self._enter("mesh_bulk")
        verts: List[np.ndarray] = []
        norms: List[np.ndarray] = []
        tris: List[np.ndarray] = []
        groups: List[Tuple[int, int, int]] = []
        offset = 0
        tri_count = 0
        for quads, normal, seed in self._face_rows(shape):
            v = quads.reshape(-1, 3).astype(np.float32)
            t = _quad_triangles(quads) + np.uint32(offset)
            verts.append(v)
            tris.append(t)
            if not skip_normals:
                norms.append(np.tile(normal.astype(np.float32), (v.shape[0], 1)))
            groups.append((tri_count, int(t.shape[0]), seed))
            offset += v.shape[0]
            tri_count += int(t.shape[0])
        return {
            "vertices": np.concatenate(verts) if verts else np.zeros((0, 3), dtype=np.float32),
            "normals": np.concatenate(norms) if norms else np.zeros((0, 3), dtype=np.float32),
            "triangles": np.concatenate(tris) if tris else np.zeros((0, 3), dtype=np.uint32),
            "face_groups": groups,
        }

    def mesh_edges_bulk(self, shape: Any, tolerance: float, angular_tolerance: float) -> Dict[str, Any]:
        if not self._caps.bulk_edge_mesh:
            raise kernel_error("BULK_EDGE_MESH_UNAVAILABLE", "Bulk edge meshing is disabled on this kernel")
        self._check(shape)
        self._enter("mesh_edges_bulk")
        lines: List[np.ndarray] = []
        groups: List[Tuple[int, int, int]] = []
        for pts, seed in self._edge_rows(shape):
            groups.append((len(lines), 1, seed))
            lines.append(pts.astype(np.float32))
        return {
            "lines": np.stack(lines) if lines else np.zeros((0, 2, 3), dtype=np.float32),
            "edge_groups": groups,
        }

    # -- virtual filesystem -------------------------------------------------

    def write_file(self, name: str, data: bytes) -> None:
        self._enter("write_file")
        with self._lock:
            self._fs[str(name)] = bytes(data)

    def read_file(self, name: str) -> bytes:
        self._enter("read_file")
        with self._lock:
            if str(name) not in self._fs:
                raise io_error("FILE_NOT_FOUND", f"No such virtual file: {name}", name=str(name))
            return self._fs[str(name)]

    def unlink(self, name: str) -> None:
        with self._lock:
            self._fs.pop(str(name), None)

    def exists(self, name: str) -> bool:
        with self._lock:
            return str(name) in self._fs

    def list_files(self) -> List[str]:
        with self._lock:
            return sorted(self._fs)

    def write_shape(self, shape: Any, name: str, fmt: str) -> bool:
        self._check(shape)
        self._enter("write_shape")
        token = str(fmt or "").strip().lower()
        if token == "bref":
            payload = {"type": shape.shape_type, "grid": shape.grid.to_dict()}
            data = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        elif token == "stl":
            data = self._ascii_stl(shape).encode("ascii")
        else:
            return False
        with self._lock:
            self._fs[str(name)] = data
        return True

    def read_shape(self, name: str, fmt: str) -> RefShape:
        self._enter("read_shape")
        token = str(fmt or "").strip().lower()
        if token != "bref":
            raise io_error("IMPORT_FORMAT_NOT_SUPPORTED", f"Import format not supported: {token}")
        with self._lock:
            raw = self._fs.get(str(name))
        if raw is None:
            raise io_error("FILE_NOT_FOUND", f"No such virtual file: {name}", name=str(name))
        try:
            payload = json.loads(raw.decode("utf-8"))
            grid = _Grid.from_dict(payload["grid"])
        except (ValueError, KeyError, TypeError) as exc:
            raise io_error("BREF_PARSE_FAILED", f"Invalid bref payload: {exc}", cause=exc) from exc
        return self._alloc(RefShape, grid, str(payload.get("type", "solid")))

    def _ascii_stl(self, shape: RefShape) -> str:
        lines = [f"solid shape_{shape.serial}"]
        for quads, normal, _ in self._face_rows(shape):
            pts = quads.reshape(-1, 3)
            for tri in _quad_triangles(quads):
                lines.append(f"  facet normal {normal[0]:.6e} {normal[1]:.6e} {normal[2]:.6e}")
                lines.append("    outer loop")
                for idx in tri:
                    x, y, z = pts[int(idx)]
                    lines.append(f"      vertex {x:.6e} {y:.6e} {z:.6e}")
                lines.append("    endloop")
                lines.append("  endfacet")
        lines.append(f"endsolid shape_{shape.serial}")
        return "\n".join(lines) + "\n"

    def close(self) -> None:
        with self._lock:
            leaked = len(self._heap)
            self._fs.clear()
        if leaked:
            self.logger.warning("Reference kernel closed with %d live native object(s)", leaked)
