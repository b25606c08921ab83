from __future__ import annotations

import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from brepbridge.kernel.providers.reference_provider import ReferenceKernel


def pytest_configure(config):
    config.addinivalue_line("markers", "kernel: geometry kernel bridge tests")
    config.addinivalue_line("markers", "freecad: needs the FreeCAD Part module")


@pytest.fixture
def kernel():
    k = ReferenceKernel()
    try:
        yield k
    finally:
        k.close()


@pytest.fixture
def make_box(kernel):
    def _make(width=1.0, depth=1.0, height=1.0, center=(0.0, 0.0, 0.0)):
        return kernel.create_primitive(
            "box",
            {"width": width, "depth": depth, "height": height, "center": center},
        )

    return _make
