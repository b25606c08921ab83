from __future__ import annotations

import importlib

import pytest

from brepbridge.memory import DisposalScope
from brepbridge.operations import BooleanOptions, fuse_all


pytestmark = [pytest.mark.kernel, pytest.mark.freecad]


def _module_importable(name: str) -> bool:
    try:
        importlib.import_module(name)
        return True
    except Exception:
        return False


HAS_FREECAD = _module_importable("FreeCAD") and _module_importable("Part")


@pytest.mark.skipif(not HAS_FREECAD, reason="FreeCAD/Part modules are not available")
def test_freecad_kernel_basic_flow():
    from brepbridge.io import export_shape
    from brepbridge.kernel.providers.freecad_provider import FreeCADKernel
    from brepbridge.mesh import mesh_shape

    kernel = FreeCADKernel()
    try:
        with DisposalScope(name="freecad") as scope:
            a = scope.register(kernel.create_primitive("box", {"width": 10.0, "depth": 10.0, "height": 10.0}))
            b = scope.register(kernel.create_primitive("box", {"width": 10.0, "depth": 10.0, "height": 10.0, "center": (5.0, 0.0, 0.0)}))

            native = fuse_all([a, b], kernel=kernel).unwrap()
            pairwise = fuse_all([a, b], BooleanOptions(strategy="pairwise"), kernel=kernel).unwrap()
            scope.register(native)
            scope.register(pairwise)

            assert kernel.volume(native.value) == pytest.approx(1500.0, rel=1e-6)
            assert kernel.volume(pairwise.value) == pytest.approx(1500.0, rel=1e-6)

            mesh = mesh_shape(native, tolerance=0.5, cache=False, kernel=kernel)
            assert mesh.triangle_count > 0

            step = export_shape(native, "step", kernel=kernel)
            assert step.is_ok
            assert len(step.value) > 0
        assert kernel.list_files() == []
    finally:
        kernel.close()
