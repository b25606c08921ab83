from __future__ import annotations

from .io import export_shape, import_shape, staged_file, unique_io_filename
from .kernel import (
    SHAPE_3D_TYPES,
    CapabilityReport,
    DisposedHandleError,
    ErrorKind,
    GeometryKernel,
    KernelError,
    NullKernel,
    ReferenceKernel,
    Result,
    build_default_kernel,
    collect_kernel_diagnostics,
    err,
    get_kernel,
    ok,
    reset_kernel,
    set_kernel,
)
from .memory import (
    DisposalScope,
    NativeHandle,
    SafetyNet,
    default_safety_net,
    gc_with_object,
    local_gc,
    register_for_cleanup,
    unregister_from_cleanup,
    unwrap,
    with_scope,
)
from .mesh import (
    EdgeMesh,
    MeshCache,
    ShapeMesh,
    clear_mesh_cache,
    create_mesh_cache,
    default_mesh_cache,
    mesh_shape,
    mesh_shape_edges,
    set_mesh_cache_size,
)
from .operations import BooleanOptions, Strategy, cut, cut_all, fuse, fuse_all, intersect, resolve_strategy
from .telemetry import DEFAULT_TRACER, traced

__version__ = "0.4.0"

__all__ = [
    "__version__",
    "traced",
    "DEFAULT_TRACER",
    "NativeHandle",
    "DisposalScope",
    "SafetyNet",
    "with_scope",
    "local_gc",
    "unwrap",
    "default_safety_net",
    "register_for_cleanup",
    "unregister_from_cleanup",
    "gc_with_object",
    "GeometryKernel",
    "ReferenceKernel",
    "NullKernel",
    "CapabilityReport",
    "KernelError",
    "DisposedHandleError",
    "ErrorKind",
    "Result",
    "ok",
    "err",
    "SHAPE_3D_TYPES",
    "get_kernel",
    "set_kernel",
    "reset_kernel",
    "build_default_kernel",
    "collect_kernel_diagnostics",
    "BooleanOptions",
    "Strategy",
    "resolve_strategy",
    "fuse_all",
    "cut_all",
    "fuse",
    "cut",
    "intersect",
    "MeshCache",
    "ShapeMesh",
    "EdgeMesh",
    "mesh_shape",
    "mesh_shape_edges",
    "default_mesh_cache",
    "create_mesh_cache",
    "clear_mesh_cache",
    "set_mesh_cache_size",
    "unique_io_filename",
    "staged_file",
    "export_shape",
    "import_shape",
]
