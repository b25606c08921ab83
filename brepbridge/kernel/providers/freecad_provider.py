from __future__ import annotations

import importlib
import logging
import os
import shutil
import tempfile
import threading
from typing import Any, List, Mapping, Sequence, Tuple

import numpy as np

from ..models import CapabilityReport, ErrorKind, KernelError, io_error, kernel_error, validation_error

_FORMAT_ALIASES = {"stp": "step", "igs": "iges", "brp": "brep"}


def _safe_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _fmt_token(fmt: str | None) -> str:
    token = str(fmt or "").strip().lower().lstrip(".")
    return _FORMAT_ALIASES.get(token, token)


def _vec_components(vec_obj: Any) -> Tuple[float, float, float]:
    for names in (("x", "y", "z"), ("X", "Y", "Z")):
        try:
            return float(getattr(vec_obj, names[0])), float(getattr(vec_obj, names[1])), float(getattr(vec_obj, names[2]))
        except (AttributeError, TypeError, ValueError):
            continue
    arr = list(vec_obj)
    return float(arr[0]), float(arr[1]), float(arr[2])


class _PartRef:
    """Owning proxy around a ``Part.Shape``; ``delete()`` nullifies it."""

    __slots__ = ("shape", "__weakref__")

    def __init__(self, shape: Any):
        self.shape = shape

    def delete(self) -> None:
        shape = self.shape
        if shape is None:
            raise kernel_error("DOUBLE_FREE", "FreeCAD shape reference was already deleted")
        self.shape = None
        nullify = getattr(shape, "nullify", None)
        if callable(nullify):
            nullify()


class FreeCADKernel:
    """FreeCAD/OCCT in-process kernel.

    FreeCAD imports stay lazy so the bridge can run on the reference or
    null kernel when FreeCAD is not installed. Booleans map to
    ``Part.Shape.fuse/cut/common``, the general fuse to ``multiFuse`` and
    the simplification pass to ``removeSplitter``. The virtual filesystem
    is a private temporary directory removed on ``close()``.
    """

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger(__name__)
        self._fc = None
        self._part = None
        self._root = ""
        self._lock = threading.Lock()
        self._caps = CapabilityReport(provider="freecad")
        self._init_backend()

    @property
    def capabilities(self) -> CapabilityReport:
        return self._caps

    def _init_backend(self) -> None:
        try:
            self._fc = importlib.import_module("FreeCAD")
            self._part = importlib.import_module("Part")
        except ImportError as exc:
            raise KernelError(
                f"Unable to import FreeCAD modules: {exc}",
                code="freecad_import_error",
                kind=ErrorKind.MODULE_INIT,
                cause=exc,
            ) from exc

        self._root = tempfile.mkdtemp(prefix="brepbridge_fs_")
        has_multi = hasattr(self._part.Shape, "multiFuse")
        self._caps = CapabilityReport(
            provider="freecad",
            batch_booleans=False,
            general_fuse=bool(has_multi),
            bulk_mesh=False,
            bulk_edge_mesh=False,
            virtual_fs=True,
            import_formats=("brep", "step", "iges"),
            export_formats=("brep", "step", "stl", "iges"),
            primitive_kinds=("box", "cube", "cylinder", "sphere"),
            glue_modes=("none", "common_face", "same_face"),
            notes=("in-process FreeCAD kernel", "glue modes are accepted and ignored"),
            extra={"fs_root": self._root, "version": ".".join(str(v) for v in self._fc.Version()[:3])},
        )

    def _vec(self, xyz: Sequence[float]) -> Any:
        x, y, z = [float(v) for v in xyz]
        return self._fc.Vector(x, y, z)

    def _shape(self, ref: Any) -> Any:
        if not isinstance(ref, _PartRef):
            raise validation_error("INVALID_NATIVE", f"Expected a FreeCAD shape reference, got {type(ref).__name__}")
        if ref.shape is None:
            raise kernel_error("USE_AFTER_FREE", "FreeCAD shape reference used after delete")
        return ref.shape

    def _run(self, op: str, fn, *args: Any) -> _PartRef:
        try:
            return _PartRef(fn(*args))
        except KernelError:
            raise
        except Exception as exc:
            raise kernel_error(f"{op.upper()}_FAILED", f"FreeCAD {op} failed: {exc}", cause=exc) from exc

    def create_primitive(self, kind: str, params: Mapping[str, Any]) -> _PartRef:
        token = str(kind or "").strip().lower()
        if token not in self._caps.primitive_kinds:
            raise validation_error("PRIMITIVE_NOT_SUPPORTED", f"Unsupported primitive kind: {token}", kind=token)
        p = dict(params or {})
        cx, cy, cz = [float(v) for v in p.get("center", (0.0, 0.0, 0.0))]

        if token in {"box", "cube"}:
            if token == "cube":
                w = d = h = max(1e-9, _safe_float(p.get("size", 1.0), 1.0))
            else:
                w = max(1e-9, _safe_float(p.get("width", 1.0), 1.0))
                d = max(1e-9, _safe_float(p.get("depth", 1.0), 1.0))
                h = max(1e-9, _safe_float(p.get("height", 1.0), 1.0))
            shape = self._part.makeBox(w, d, h)
            if "origin" in p:
                shape.translate(self._vec(p["origin"]))
            else:
                shape.translate(self._vec((cx - w * 0.5, cy - d * 0.5, cz - h * 0.5)))
        elif token == "cylinder":
            r = max(1e-9, _safe_float(p.get("radius", 0.5), 0.5))
            h = max(1e-9, _safe_float(p.get("height", 1.0), 1.0))
            shape = self._part.makeCylinder(r, h, self._vec((cx, cy, cz - h * 0.5)), self._vec((0.0, 0.0, 1.0)), 360.0)
        else:
            r = max(1e-9, _safe_float(p.get("radius", 0.5), 0.5))
            shape = self._part.makeSphere(r, self._vec((cx, cy, cz)))
        return _PartRef(shape)

    def _finish(self, shape: Any, simplify: bool) -> Any:
        return shape.removeSplitter() if simplify else shape

    def fuse(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> _PartRef:
        sa, sb = self._shape(a), self._shape(b)
        return self._run("fuse", lambda: self._finish(sa.fuse(sb), simplify))

    def cut(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> _PartRef:
        sa, sb = self._shape(a), self._shape(b)
        return self._run("cut", lambda: self._finish(sa.cut(sb), simplify))

    def common(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> _PartRef:
        sa, sb = self._shape(a), self._shape(b)
        return self._run("common", lambda: self._finish(sa.common(sb), simplify))

    def general_fuse(self, shapes: Sequence[Any], *, glue: str = "none", simplify: bool = False) -> _PartRef:
        if not self._caps.general_fuse:
            raise kernel_error("GENERAL_FUSE_UNAVAILABLE", "Part.Shape.multiFuse is not available")
        natives = [self._shape(s) for s in shapes]
        if len(natives) < 2:
            raise validation_error("GENERAL_FUSE_ARITY", "General fuse needs at least two shapes")
        return self._run("general_fuse", lambda: self._finish(natives[0].multiFuse(natives[1:]), simplify))

    def make_compound(self, shapes: Sequence[Any]) -> _PartRef:
        natives = [self._shape(s) for s in shapes]
        return self._run("make_compound", self._part.makeCompound, natives)

    def shape_type(self, shape: Any) -> str:
        return str(self._shape(shape).ShapeType).lower()

    def is_null(self, shape: Any) -> bool:
        if shape is None:
            return True
        return bool(self._shape(shape).isNull())

    def volume(self, shape: Any) -> float:
        return float(self._shape(shape).Volume)

    def hash_code(self, shape: Any, upper: int) -> int:
        bound = int(upper)
        if bound < 1:
            raise validation_error("INVALID_HASH_BOUND", f"Hash upper bound must be >= 1, got {bound}")
        return int(self._shape(shape).hashCode()) % bound

    def faces(self, shape: Any) -> List[_PartRef]:
        return [_PartRef(f) for f in self._shape(shape).Faces]

    def edges(self, shape: Any) -> List[_PartRef]:
        return [_PartRef(e) for e in self._shape(shape).Edges]

    def face_triangulation(
        self, face: Any, tolerance: float, angular_tolerance: float, skip_normals: bool = False
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        native = self._shape(face)
        try:
            points, facets = native.tessellate(float(tolerance))
        except Exception as exc:
            raise kernel_error("TRIANGULATION_FAILED", f"Face triangulation failed: {exc}", cause=exc) from exc
        verts = np.array([_vec_components(p) for p in points], dtype=np.float32).reshape(-1, 3)
        tris = np.array([tuple(int(i) for i in t[:3]) for t in facets], dtype=np.uint32).reshape(-1, 3)
        if skip_normals or verts.shape[0] == 0:
            return verts, np.zeros((0, 3), dtype=np.float32), tris
        normals = np.zeros_like(verts)
        surface = native.Surface
        for i, p in enumerate(points):
            u, v = surface.parameter(p)
            normals[i] = _vec_components(native.normalAt(u, v))
        return verts, normals, tris

    def edge_polyline(self, edge: Any, tolerance: float, angular_tolerance: float) -> np.ndarray:
        native = self._shape(edge)
        try:
            points = native.discretize(Deflection=float(tolerance))
        except Exception as exc:
            raise kernel_error("DISCRETIZE_FAILED", f"Edge discretization failed: {exc}", cause=exc) from exc
        return np.array([_vec_components(p) for p in points], dtype=np.float32).reshape(-1, 3)

    def _path(self, name: str) -> str:
        base = os.path.basename(str(name))
        if not base or base != str(name):
            raise validation_error("INVALID_FILENAME", f"Virtual file names must be bare names: {name!r}")
        return os.path.join(self._root, base)

    def write_file(self, name: str, data: bytes) -> None:
        with open(self._path(name), "wb") as fh:
            fh.write(bytes(data))

    def read_file(self, name: str) -> bytes:
        path = self._path(name)
        if not os.path.isfile(path):
            raise io_error("FILE_NOT_FOUND", f"No such virtual file: {name}", name=str(name))
        with open(path, "rb") as fh:
            return fh.read()

    def unlink(self, name: str) -> None:
        path = self._path(name)
        if os.path.isfile(path):
            os.remove(path)

    def exists(self, name: str) -> bool:
        return os.path.isfile(self._path(name))

    def list_files(self) -> List[str]:
        return sorted(os.listdir(self._root)) if self._root and os.path.isdir(self._root) else []

    def write_shape(self, shape: Any, name: str, fmt: str) -> bool:
        native = self._shape(shape)
        token = _fmt_token(fmt)
        path = self._path(name)
        writers = {
            "brep": "exportBrep",
            "step": "exportStep",
            "stl": "exportStl",
            "iges": "exportIges",
        }
        method = writers.get(token)
        if method is None:
            return False
        try:
            getattr(native, method)(path)
        except Exception as exc:
            self.logger.warning("FreeCAD %s export to %s failed: %s", token, name, exc)
            return False
        return os.path.isfile(path)

    def read_shape(self, name: str, fmt: str) -> _PartRef:
        token = _fmt_token(fmt)
        if token not in self._caps.import_formats:
            raise io_error("IMPORT_FORMAT_NOT_SUPPORTED", f"Import format not supported: {token}")
        path = self._path(name)
        if not os.path.isfile(path):
            raise io_error("FILE_NOT_FOUND", f"No such virtual file: {name}", name=str(name))
        try:
            if token == "brep":
                shape = self._part.Shape()
                shape.read(path)
            else:
                shape = self._part.read(path)
        except Exception as exc:
            raise io_error("IMPORT_FAILED", f"FreeCAD {token} import failed: {exc}", cause=exc) from exc
        return _PartRef(shape)

    def close(self) -> None:
        with self._lock:
            root, self._root = self._root, ""
        if root:
            shutil.rmtree(root, ignore_errors=True)
