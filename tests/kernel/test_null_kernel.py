from __future__ import annotations

import pytest

from brepbridge.kernel.models import ErrorKind, KernelError
from brepbridge.kernel.providers.null_provider import NullKernel
from brepbridge.operations import fuse_all


pytestmark = pytest.mark.kernel


def test_null_kernel_reports_capabilities():
    kernel = NullKernel(reason="no backend")
    caps = kernel.capabilities.to_dict()

    assert caps["provider"] == "null"
    assert caps["batch_booleans"] is False
    assert caps["general_fuse"] is False
    assert caps["notes"] == ["no backend"]


def test_null_kernel_raises_controlled_error_on_create():
    kernel = NullKernel(reason="no backend")
    with pytest.raises(KernelError) as exc:
        kernel.create_primitive("box", {})

    assert exc.value.code == "backend_unavailable"
    assert exc.value.kind == ErrorKind.MODULE_INIT
    assert "create_primitive" in str(exc.value)


def test_null_kernel_fs_queries_are_non_crashing():
    kernel = NullKernel()
    assert kernel.exists("anything") is False
    assert kernel.unlink("anything") is None
    assert kernel.is_null(object()) is True
    kernel.close()


def test_fuse_all_on_null_kernel_reports_every_stage():
    result = fuse_all([object(), object()], kernel=NullKernel())
    assert result.is_err
    assert result.error.code == "FUSE_ALL_FAILED"
    assert "pairwise" in str(result.error)
