from __future__ import annotations

import logging
from typing import Any, List, Optional, Tuple, Union

import numpy as np

from ..kernel import get_kernel
from ..kernel.interfaces import GeometryKernel
from ..kernel.models import KernelError, validation_error
from ..memory import DisposalScope, unwrap
from ..telemetry import traced
from .cache import MeshCache, build_edge_mesh_cache_key, build_mesh_cache_key, default_mesh_cache
from .models import EdgeMesh, ShapeMesh

_log = logging.getLogger(__name__)

# Face and edge ids are kernel hash codes folded into this range.
HASH_UPPER = 2**31 - 1

CacheArg = Union[MeshCache, bool, None]


def _check_tolerances(tolerance: float, angular_tolerance: float) -> Tuple[float, float]:
    tol = float(tolerance)
    ang = float(angular_tolerance)
    if not (tol > 0.0):
        raise validation_error("INVALID_TOLERANCE", f"tolerance must be > 0, got {tolerance!r}")
    if not (ang > 0.0):
        raise validation_error("INVALID_TOLERANCE", f"angular_tolerance must be > 0, got {angular_tolerance!r}")
    return tol, ang


def _resolve_cache(cache: CacheArg) -> Optional[MeshCache]:
    if cache is False:
        return None
    if cache is None or cache is True:
        return default_mesh_cache()
    return cache


def _has_bulk(k: GeometryKernel, entry_point: str, flag: str) -> bool:
    return bool(getattr(k.capabilities, flag, False)) and callable(getattr(k, entry_point, None))


def _mesh_bulk(k: GeometryKernel, native: Any, tol: float, ang: float, skip_normals: bool) -> ShapeMesh:
    payload = k.mesh_bulk(native, tol, ang, skip_normals)
    groups = [(s, c, int(f) % HASH_UPPER) for s, c, f in payload["face_groups"]]
    return ShapeMesh.build(
        payload["vertices"],
        payload["normals"],
        payload["triangles"],
        groups,
        tolerance=tol,
        angular_tolerance=ang,
        path="bulk",
    )


def _mesh_faces(k: GeometryKernel, native: Any, tol: float, ang: float, skip_normals: bool) -> ShapeMesh:
    verts: List[np.ndarray] = []
    norms: List[np.ndarray] = []
    tris: List[np.ndarray] = []
    groups: List[Tuple[int, int, int]] = []
    v_off = 0
    t_off = 0
    with DisposalScope(name="mesh_shape.faces") as scope:
        faces = [scope.register(f) for f in k.faces(native)]
        for face in faces:
            v, n, t = k.face_triangulation(face, tol, ang, skip_normals)
            v = np.asarray(v, dtype=np.float32).reshape(-1, 3)
            t = np.asarray(t, dtype=np.uint32).reshape(-1, 3)
            verts.append(v)
            tris.append(t + np.uint32(v_off))
            if not skip_normals:
                norms.append(np.asarray(n, dtype=np.float32).reshape(-1, 3))
            groups.append((t_off, int(t.shape[0]), k.hash_code(face, HASH_UPPER)))
            v_off += int(v.shape[0])
            t_off += int(t.shape[0])
    return ShapeMesh.build(
        np.concatenate(verts) if verts else np.zeros((0, 3), dtype=np.float32),
        np.concatenate(norms) if norms else np.zeros((0, 3), dtype=np.float32),
        np.concatenate(tris) if tris else np.zeros((0, 3), dtype=np.uint32),
        groups,
        tolerance=tol,
        angular_tolerance=ang,
        path="faces",
    )


def _extract_mesh(k: GeometryKernel, native: Any, tol: float, ang: float, skip_normals: bool) -> ShapeMesh:
    with traced("mesh.mesh_shape", tolerance=tol, skip_normals=bool(skip_normals)):
        mesh = None
        if _has_bulk(k, "mesh_bulk", "bulk_mesh"):
            try:
                mesh = _mesh_bulk(k, native, tol, ang, skip_normals)
            except KernelError as exc:
                _log.warning("Bulk meshing failed, using per-face path: %s", exc)
        if mesh is None:
            mesh = _mesh_faces(k, native, tol, ang, skip_normals)
    _log.debug("mesh_shape: %d triangles via %s path", mesh.triangle_count, mesh.meta.get("path"))
    return mesh


def mesh_shape(
    shape: Any,
    *,
    tolerance: float = 1e-3,
    angular_tolerance: float = 0.1,
    skip_normals: bool = False,
    cache: CacheArg = None,
    kernel: GeometryKernel | None = None,
) -> ShapeMesh:
    """Triangulate ``shape``; repeated calls with equal parameters return the cached instance.

    Pass ``cache=False`` to bypass caching or a ``MeshCache`` for an
    isolated cache.
    """
    tol, ang = _check_tolerances(tolerance, angular_tolerance)
    native = unwrap(shape)
    k = kernel or get_kernel()
    store = _resolve_cache(cache)
    if store is None:
        return _extract_mesh(k, native, tol, ang, bool(skip_normals))
    key = build_mesh_cache_key(tol, ang, bool(skip_normals))
    return store.get_or_compute(native, key, lambda: _extract_mesh(k, native, tol, ang, bool(skip_normals)))


def _edges_bulk(k: GeometryKernel, native: Any, tol: float, ang: float) -> EdgeMesh:
    payload = k.mesh_edges_bulk(native, tol, ang)
    groups = [(s, c, int(e) % HASH_UPPER) for s, c, e in payload["edge_groups"]]
    return EdgeMesh.build(payload["lines"], groups, tolerance=tol, angular_tolerance=ang, path="bulk")


def _edges_each(k: GeometryKernel, native: Any, tol: float, ang: float) -> EdgeMesh:
    segments: List[np.ndarray] = []
    groups: List[Tuple[int, int, int]] = []
    offset = 0
    with DisposalScope(name="mesh_shape_edges.edges") as scope:
        edges = [scope.register(e) for e in k.edges(native)]
        for edge in edges:
            pts = np.asarray(k.edge_polyline(edge, tol, ang), dtype=np.float32).reshape(-1, 3)
            if pts.shape[0] < 2:
                continue
            segs = np.stack([pts[:-1], pts[1:]], axis=1)
            segments.append(segs)
            groups.append((offset, int(segs.shape[0]), k.hash_code(edge, HASH_UPPER)))
            offset += int(segs.shape[0])
    lines = np.concatenate(segments) if segments else np.zeros((0, 2, 3), dtype=np.float32)
    return EdgeMesh.build(lines, groups, tolerance=tol, angular_tolerance=ang, path="edges")


def _extract_edges(k: GeometryKernel, native: Any, tol: float, ang: float) -> EdgeMesh:
    with traced("mesh.mesh_shape_edges", tolerance=tol):
        mesh = None
        if _has_bulk(k, "mesh_edges_bulk", "bulk_edge_mesh"):
            try:
                mesh = _edges_bulk(k, native, tol, ang)
            except KernelError as exc:
                _log.warning("Bulk edge meshing failed, using per-edge path: %s", exc)
        if mesh is None:
            mesh = _edges_each(k, native, tol, ang)
    _log.debug("mesh_shape_edges: %d segments via %s path", mesh.segment_count, mesh.meta.get("path"))
    return mesh


def mesh_shape_edges(
    shape: Any,
    *,
    tolerance: float = 1e-3,
    angular_tolerance: float = 0.1,
    cache: CacheArg = None,
    kernel: GeometryKernel | None = None,
) -> EdgeMesh:
    tol, ang = _check_tolerances(tolerance, angular_tolerance)
    native = unwrap(shape)
    k = kernel or get_kernel()
    store = _resolve_cache(cache)
    if store is None:
        return _extract_edges(k, native, tol, ang)
    key = build_edge_mesh_cache_key(tol, ang)
    return store.get_or_compute(native, key, lambda: _extract_edges(k, native, tol, ang))
