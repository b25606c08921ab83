from __future__ import annotations

import logging
import threading
from typing import Optional

from .diagnostics import build_default_kernel, collect_kernel_diagnostics
from .interfaces import GeometryKernel, NativeObject
from .models import (
    SHAPE_3D_TYPES,
    CapabilityReport,
    DisposedHandleError,
    ErrorKind,
    KernelDiagnostics,
    KernelError,
    Result,
    err,
    io_error,
    kernel_error,
    ok,
    type_cast_error,
    validation_error,
)
from .providers.null_provider import NullKernel
from .providers.reference_provider import ReferenceKernel

_LOCK = threading.Lock()
_ACTIVE: Optional[GeometryKernel] = None


def get_kernel() -> GeometryKernel:
    """Return the process-wide kernel, building the default one on first use."""
    global _ACTIVE
    with _LOCK:
        if _ACTIVE is None:
            _ACTIVE, _ = build_default_kernel(logger=logging.getLogger(__name__))
        return _ACTIVE


def set_kernel(kernel: GeometryKernel) -> Optional[GeometryKernel]:
    """Install ``kernel`` as the process-wide kernel and return the previous one."""
    global _ACTIVE
    if kernel is None:
        raise validation_error("NULL_KERNEL", "set_kernel() requires a kernel instance")
    with _LOCK:
        previous, _ACTIVE = _ACTIVE, kernel
    return previous


def reset_kernel() -> None:
    global _ACTIVE
    with _LOCK:
        previous, _ACTIVE = _ACTIVE, None
    if previous is not None:
        previous.close()


__all__ = [
    "GeometryKernel",
    "NativeObject",
    "KernelError",
    "DisposedHandleError",
    "ErrorKind",
    "Result",
    "ok",
    "err",
    "kernel_error",
    "validation_error",
    "type_cast_error",
    "io_error",
    "CapabilityReport",
    "KernelDiagnostics",
    "SHAPE_3D_TYPES",
    "NullKernel",
    "ReferenceKernel",
    "collect_kernel_diagnostics",
    "build_default_kernel",
    "get_kernel",
    "set_kernel",
    "reset_kernel",
]
