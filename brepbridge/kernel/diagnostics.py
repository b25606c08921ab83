from __future__ import annotations

import importlib
import importlib.util
import logging
import os
import platform
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .. import config
from .interfaces import GeometryKernel
from .models import KernelDiagnostics, KernelError
from .providers.null_provider import NullKernel


def _find_spec(name: str) -> bool:
    try:
        return importlib.util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False


def _probe_module_import(name: str) -> Tuple[bool, str]:
    if not _find_spec(name):
        return False, "module_not_found"
    try:
        importlib.import_module(name)
        return True, ""
    except Exception as exc:
        # FreeCAD builds fail in many ways at import time; record and move on.
        return False, f"{exc.__class__.__name__}: {exc}"


def _module_version(name: str) -> str:
    try:
        mod = importlib.import_module(name)
    except ImportError:
        return ""
    return str(getattr(mod, "__version__", "") or "")


def collect_kernel_diagnostics(logger: Optional[logging.Logger] = None) -> KernelDiagnostics:
    log = logger or logging.getLogger(__name__)

    freecad_ok, freecad_err = _probe_module_import("FreeCAD")
    part_ok, part_err = _probe_module_import("Part")
    numpy_version = _module_version("numpy")
    pyvista_ok = _find_spec("pyvista")

    import_errors: Dict[str, str] = {}
    if freecad_err:
        import_errors["FreeCAD"] = str(freecad_err)
    if part_err:
        import_errors["Part"] = str(part_err)

    report: Dict[str, Any] = {
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "platform": {
            "os_name": os.name,
            "system": platform.system(),
            "release": platform.release(),
            "python": platform.python_version(),
        },
        "reference": {
            "available": bool(numpy_version),
            "numpy": numpy_version,
        },
        "freecad": {
            "import_freecad": bool(freecad_ok),
            "import_part": bool(part_ok),
            "inprocess_available": bool(freecad_ok and part_ok),
            "import_errors": dict(import_errors),
        },
        "viz": {
            "pyvista": bool(pyvista_ok),
        },
        "config": {
            "kernel": config.KERNEL_BACKEND,
            "default_strategy": config.DEFAULT_STRATEGY,
            "safety_net": bool(config.SAFETY_NET_ENABLED),
            "safety_net_atexit": bool(config.SAFETY_NET_ATEXIT),
            "mesh_cache_size": int(config.MESH_CACHE_SIZE),
        },
    }

    status_bits = []
    if report["freecad"]["inprocess_available"]:
        status_bits.append("freecad:inprocess")
    if report["reference"]["available"]:
        status_bits.append("reference:numpy")
    if report["viz"]["pyvista"]:
        status_bits.append("viz:pyvista")
    report["summary"] = ", ".join(status_bits) if status_bits else "no kernel available (null mode)"

    log.info("Kernel doctor summary: %s", report["summary"])
    return KernelDiagnostics(report=report)


def build_default_kernel(
    logger: Optional[logging.Logger] = None, backend: Optional[str] = None
) -> Tuple[GeometryKernel, Dict[str, Any]]:
    """Build the geometry kernel named by ``backend`` (or ``BREP_KERNEL``).

    ``auto`` prefers FreeCAD in-process, then the numpy reference kernel.
    Returns ``(kernel, diagnostics_report)`` and never raises; the null
    kernel is the last resort.
    """
    log = logger or logging.getLogger(__name__)
    diag = collect_kernel_diagnostics(logger=log).to_dict()
    choice = str(backend or config.KERNEL_BACKEND or "auto").strip().lower()

    if choice == "null":
        return NullKernel(reason="Null kernel selected by configuration"), diag

    if choice in {"auto", "freecad"} and bool(diag.get("freecad", {}).get("inprocess_available", False)):
        try:
            from .providers.freecad_provider import FreeCADKernel

            return FreeCADKernel(logger=log), diag
        except KernelError as exc:
            log.exception("Failed to initialize FreeCAD kernel: %s", exc)
        if choice == "freecad":
            return NullKernel(reason="FreeCAD kernel failed to initialize"), diag

    if choice in {"auto", "reference"} and bool(diag.get("reference", {}).get("available", False)):
        from .providers.reference_provider import ReferenceKernel

        return ReferenceKernel(logger=log), diag

    reason = str(diag.get("summary", "No geometry kernel available"))
    return NullKernel(reason=reason), diag
