from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Mapping, Optional, Tuple, TypeVar

T = TypeVar("T")
U = TypeVar("U")


class ErrorKind:
    KERNEL_OPERATION = "KERNEL_OPERATION"
    VALIDATION = "VALIDATION"
    TYPE_CAST = "TYPE_CAST"
    IO = "IO"
    DISPOSAL = "DISPOSAL"
    MODULE_INIT = "MODULE_INIT"


class KernelError(RuntimeError):
    """Controlled error type for kernel and bridge operations."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "kernel_error",
        kind: str = ErrorKind.KERNEL_OPERATION,
        details: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(str(message))
        self.code = str(code or "kernel_error")
        self.kind = str(kind or ErrorKind.KERNEL_OPERATION)
        self.details: Dict[str, Any] = dict(details or {})
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": str(self),
            "details": dict(self.details),
            "cause": repr(self.cause) if self.cause is not None else None,
        }


class DisposedHandleError(KernelError):
    """Raised when a released native reference is used again."""

    def __init__(self, message: str = "Native handle has been disposed", *, details: Mapping[str, Any] | None = None):
        super().__init__(message, code="HANDLE_DISPOSED", kind=ErrorKind.DISPOSAL, details=details)


def kernel_error(code: str, message: str, cause: BaseException | None = None, **details: Any) -> KernelError:
    return KernelError(message, code=code, kind=ErrorKind.KERNEL_OPERATION, details=details, cause=cause)


def validation_error(code: str, message: str, cause: BaseException | None = None, **details: Any) -> KernelError:
    return KernelError(message, code=code, kind=ErrorKind.VALIDATION, details=details, cause=cause)


def type_cast_error(code: str, message: str, cause: BaseException | None = None, **details: Any) -> KernelError:
    return KernelError(message, code=code, kind=ErrorKind.TYPE_CAST, details=details, cause=cause)


def io_error(code: str, message: str, cause: BaseException | None = None, **details: Any) -> KernelError:
    return KernelError(message, code=code, kind=ErrorKind.IO, details=details, cause=cause)


@dataclass(frozen=True)
class Result(Generic[T]):
    """Explicit success-or-failure value returned by fallible bridge calls."""

    is_ok: bool
    value: Optional[T] = None
    error: Optional[KernelError] = None

    @property
    def is_err(self) -> bool:
        return not self.is_ok

    def unwrap(self) -> T:
        if self.is_ok:
            return self.value  # type: ignore[return-value]
        raise KernelError(
            f"Called unwrap() on an error result: {self.error}",
            code="UNWRAP_ERR",
            kind=self.error.kind if self.error is not None else ErrorKind.KERNEL_OPERATION,
            details={"error": self.error.to_dict() if self.error is not None else {}},
            cause=self.error,
        )

    def unwrap_or(self, default: T) -> T:
        return self.value if self.is_ok else default  # type: ignore[return-value]

    def map(self, fn: Callable[[T], U]) -> "Result[U]":
        if self.is_ok:
            return ok(fn(self.value))  # type: ignore[arg-type]
        return err(self.error)  # type: ignore[arg-type]

    def and_then(self, fn: Callable[[T], "Result[U]"]) -> "Result[U]":
        if self.is_ok:
            return fn(self.value)  # type: ignore[arg-type]
        return err(self.error)  # type: ignore[arg-type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": bool(self.is_ok),
            "error": self.error.to_dict() if self.error is not None else None,
        }


def ok(value: T = None) -> Result[T]:
    return Result(True, value, None)


def err(error: KernelError) -> Result[Any]:
    return Result(False, None, error)


@dataclass(frozen=True)
class CapabilityReport:
    provider: str
    batch_booleans: bool = False
    general_fuse: bool = False
    bulk_mesh: bool = False
    bulk_edge_mesh: bool = False
    virtual_fs: bool = False
    import_formats: Tuple[str, ...] = ()
    export_formats: Tuple[str, ...] = ()
    primitive_kinds: Tuple[str, ...] = ()
    glue_modes: Tuple[str, ...] = ("none",)
    notes: Tuple[str, ...] = ()
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "batch_booleans": bool(self.batch_booleans),
            "general_fuse": bool(self.general_fuse),
            "bulk_mesh": bool(self.bulk_mesh),
            "bulk_edge_mesh": bool(self.bulk_edge_mesh),
            "virtual_fs": bool(self.virtual_fs),
            "import_formats": list(self.import_formats),
            "export_formats": list(self.export_formats),
            "primitive_kinds": list(self.primitive_kinds),
            "glue_modes": list(self.glue_modes),
            "notes": list(self.notes),
            "extra": dict(self.extra),
        }


@dataclass(frozen=True)
class KernelDiagnostics:
    report: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.report)


# Topological categories that count as a 3-D result of a boolean.
SHAPE_3D_TYPES = frozenset({"solid", "compsolid", "shell", "compound"})
