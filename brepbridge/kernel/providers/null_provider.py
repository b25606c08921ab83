from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..models import CapabilityReport, ErrorKind, KernelError


class NullKernel:
    """Fallback kernel used when no geometry backend is available."""

    def __init__(self, reason: str = "No geometry kernel is available in this environment"):
        self._reason = str(reason or "No geometry kernel is available in this environment")
        self._capabilities = CapabilityReport(
            provider="null",
            notes=(self._reason,),
        )

    @property
    def capabilities(self) -> CapabilityReport:
        return self._capabilities

    @property
    def reason(self) -> str:
        return self._reason

    def _not_available(self, operation: str) -> KernelError:
        return KernelError(
            f"{operation} not available: {self._reason}",
            code="backend_unavailable",
            kind=ErrorKind.MODULE_INIT,
            details={"provider": "null", "operation": str(operation)},
        )

    def create_primitive(self, kind: str, params: Mapping[str, Any]) -> Any:
        raise self._not_available(f"create_primitive({kind})")

    def fuse(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> Any:
        raise self._not_available("fuse")

    def cut(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> Any:
        raise self._not_available("cut")

    def common(self, a: Any, b: Any, *, glue: str = "none", simplify: bool = False) -> Any:
        raise self._not_available("common")

    def make_compound(self, shapes: Sequence[Any]) -> Any:
        raise self._not_available("make_compound")

    def shape_type(self, shape: Any) -> str:
        raise self._not_available("shape_type")

    def is_null(self, shape: Any) -> bool:
        return True

    def volume(self, shape: Any) -> float:
        raise self._not_available("volume")

    def hash_code(self, shape: Any, upper: int) -> int:
        raise self._not_available("hash_code")

    def faces(self, shape: Any) -> Sequence[Any]:
        raise self._not_available("faces")

    def edges(self, shape: Any) -> Sequence[Any]:
        raise self._not_available("edges")

    def face_triangulation(self, face: Any, tolerance: float, angular_tolerance: float, skip_normals: bool = False):
        raise self._not_available("face_triangulation")

    def edge_polyline(self, edge: Any, tolerance: float, angular_tolerance: float):
        raise self._not_available("edge_polyline")

    def write_file(self, name: str, data: bytes) -> None:
        raise self._not_available("write_file")

    def read_file(self, name: str) -> bytes:
        raise self._not_available("read_file")

    def unlink(self, name: str) -> None:
        return None

    def exists(self, name: str) -> bool:
        return False

    def write_shape(self, shape: Any, name: str, fmt: str) -> bool:
        raise self._not_available(f"write_shape({fmt or ''})")

    def read_shape(self, name: str, fmt: str) -> Any:
        raise self._not_available(f"read_shape({fmt or ''})")

    def close(self) -> None:
        return None
