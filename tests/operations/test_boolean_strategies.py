from __future__ import annotations

import pytest

from brepbridge.kernel.models import ErrorKind, KernelError
from brepbridge.kernel.providers.reference_provider import ReferenceKernel
from brepbridge.memory import NativeHandle
from brepbridge.operations import BooleanOptions, Strategy, cut, cut_all, fuse, fuse_all, intersect, resolve_strategy


pytestmark = pytest.mark.kernel


def _boxes(k, centers):
    return [k.create_primitive("box", {"center": c}) for c in centers]


def _fuse_calls(k):
    return sum(k.calls[op] for op in ("fuse", "general_fuse", "fuse_all_batch"))


def test_fuse_all_empty_is_a_validation_error(kernel):
    result = fuse_all([], kernel=kernel)
    assert result.is_err
    assert result.error.kind == ErrorKind.VALIDATION
    assert result.error.code == "FUSE_ALL_EMPTY"


def test_fuse_all_single_operand_is_returned_unchanged(kernel, make_box):
    box = make_box()
    before = sum(kernel.calls.values())

    result = fuse_all([box], kernel=kernel)

    assert result.is_ok
    assert result.value is box
    assert sum(kernel.calls.values()) == before


def test_half_overlapping_boxes_fuse_to_one_and_a_half(kernel):
    a, b = _boxes(kernel, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)])
    result = fuse_all([a, b], kernel=kernel)

    handle = result.unwrap()
    volume = kernel.volume(handle.value)
    assert 1.0 < volume < 2.0
    assert volume == pytest.approx(1.5)
    handle.release()


def test_native_and_pairwise_give_the_same_volume():
    k = ReferenceKernel(batch_booleans=False)
    shapes = _boxes(k, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0), (0.25, 0.5, 0.25)])

    native = fuse_all(shapes, BooleanOptions(strategy="native"), kernel=k).unwrap()
    pairwise = fuse_all(shapes, BooleanOptions(strategy="pairwise"), kernel=k).unwrap()

    assert k.calls["general_fuse"] == 1
    assert k.volume(native.value) == pytest.approx(k.volume(pairwise.value))


def test_batch_path_is_preferred_when_exposed(kernel):
    shapes = _boxes(kernel, [(0.0, 0.0, 0.0), (2.0, 0.0, 0.0), (4.0, 0.0, 0.0)])
    handle = fuse_all(shapes, kernel=kernel).unwrap()

    assert kernel.calls["fuse_all_batch"] == 1
    assert _fuse_calls(kernel) == 1
    assert kernel.volume(handle.value) == pytest.approx(3.0)


def test_resolve_strategy_follows_capabilities():
    assert resolve_strategy(ReferenceKernel()) is Strategy.BATCH
    assert resolve_strategy(ReferenceKernel(batch_booleans=False)) is Strategy.NATIVE
    assert resolve_strategy(ReferenceKernel(batch_booleans=False, general_fuse=False)) is Strategy.PAIRWISE
    assert resolve_strategy(ReferenceKernel(), {"strategy": "pairwise"}) is Strategy.PAIRWISE
    assert resolve_strategy(ReferenceKernel(), operation="cut") is Strategy.BATCH
    assert resolve_strategy(ReferenceKernel(batch_booleans=False), operation="cut") is Strategy.NATIVE


def test_pairwise_defers_simplification_to_the_final_combine():
    k = ReferenceKernel()
    shapes = _boxes(k, [(float(i), 0.0, 0.0) for i in range(5)])

    handle = fuse_all(shapes, BooleanOptions(strategy="pairwise", simplify=True), kernel=k).unwrap()

    fuses = [info for op, info in k.journal if op == "fuse"]
    assert len(fuses) == 4
    assert [f["simplify"] for f in fuses[:-1]] == [False, False, False]
    assert fuses[-1]["simplify"] is True
    assert k.calls["simplify"] == 1
    assert k.volume(handle.value) == pytest.approx(5.0)


def test_pairwise_releases_intermediates_but_not_operands():
    k = ReferenceKernel()
    shapes = _boxes(k, [(float(i), 0.0, 0.0) for i in range(4)])

    handle = fuse_all(shapes, BooleanOptions(strategy="pairwise"), kernel=k).unwrap()

    assert all(not s.deleted for s in shapes)
    assert k.live_count() == len(shapes) + 1
    handle.release()
    assert k.live_count() == len(shapes)


def test_failing_batch_falls_back_to_next_stage():
    k = ReferenceKernel(failing_ops={"fuse_all_batch"})
    shapes = _boxes(k, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)])

    handle = fuse_all(shapes, kernel=k).unwrap()

    assert k.calls["fuse_all_batch"] == 1
    assert k.calls["general_fuse"] == 1
    assert k.volume(handle.value) == pytest.approx(1.5)


def test_every_stage_failing_names_each_stage():
    k = ReferenceKernel(failing_ops={"fuse_all_batch", "general_fuse", "fuse"})
    shapes = _boxes(k, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0), (1.0, 0.0, 0.0)])

    result = fuse_all(shapes, kernel=k)

    assert result.is_err
    assert result.error.code == "FUSE_ALL_FAILED"
    assert result.error.details["stages"] == ["batch", "native", "pairwise"]
    assert k.live_count() == len(shapes)


def test_non_3d_result_is_released_and_reported():
    class _FlatKernel(ReferenceKernel):
        def shape_type(self, shape):
            if shape.serial > 2:
                return "face"
            return super().shape_type(shape)

    k = _FlatKernel()
    shapes = _boxes(k, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)])

    result = fuse_all(shapes, kernel=k)

    assert result.is_err
    assert result.error.kind == ErrorKind.TYPE_CAST
    assert result.error.code == "FUSE_ALL_NOT_3D"
    assert k.live_count() == 2


def test_handles_are_accepted_as_operands(kernel):
    shapes = [NativeHandle(s) for s in _boxes(kernel, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)])]
    handle = fuse_all(shapes, kernel=kernel).unwrap()
    assert kernel.volume(handle.value) == pytest.approx(1.5)

    shapes[0].release()
    with pytest.raises(KernelError):
        fuse_all(shapes, kernel=kernel)


def test_invalid_optimisation_is_a_validation_error():
    with pytest.raises(KernelError) as exc:
        BooleanOptions(optimisation="weld")
    assert exc.value.code == "INVALID_OPTIMISATION"
    with pytest.raises(KernelError):
        BooleanOptions(strategy="fastest")
    assert BooleanOptions(optimisation="same_face").glue_mode == 2


def test_cut_all_without_tools_returns_base(kernel, make_box):
    base = make_box()
    result = cut_all(base, [], kernel=kernel)
    assert result.value is base


def test_cut_all_batch_and_compound_paths_agree():
    batch_k = ReferenceKernel()
    compound_k = ReferenceKernel(batch_booleans=False)
    centers = [(0.0, 0.0, 0.0), (0.75, 0.0, 0.0), (-0.75, 0.0, 0.0)]

    base, *tools = _boxes(batch_k, [(0.0, 0.0, 0.0)] + centers[1:])
    batch = cut_all(base, tools, kernel=batch_k).unwrap()
    assert batch_k.calls["cut_all_batch"] == 1

    base2, *tools2 = _boxes(compound_k, [(0.0, 0.0, 0.0)] + centers[1:])
    compound = cut_all(base2, tools2, kernel=compound_k).unwrap()
    assert compound_k.calls["make_compound"] == 1
    assert compound_k.calls["cut"] == 1

    assert batch_k.volume(batch.value) == pytest.approx(0.5)
    assert compound_k.volume(compound.value) == pytest.approx(0.5)
    compound.release()
    assert compound_k.live_count() == 3


def test_cut_all_single_tool_cuts_directly():
    k = ReferenceKernel(batch_booleans=False)
    base, tool = _boxes(k, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)])
    handle = cut_all(base, [tool], kernel=k).unwrap()
    assert k.calls["make_compound"] == 0
    assert k.volume(handle.value) == pytest.approx(0.5)


def test_cut_all_can_remove_everything(kernel):
    base, tool = _boxes(kernel, [(0.0, 0.0, 0.0), (0.0, 0.0, 0.0)])
    result = cut_all(base, [tool], kernel=kernel)
    assert result.is_ok
    assert kernel.volume(result.value.value) == 0.0


def test_binary_operations(kernel):
    a, b = _boxes(kernel, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)])
    assert kernel.volume(fuse(a, b, kernel=kernel).unwrap().value) == pytest.approx(1.5)
    assert kernel.volume(cut(a, b, kernel=kernel).unwrap().value) == pytest.approx(0.5)
    assert kernel.volume(intersect(a, b, kernel=kernel).unwrap().value) == pytest.approx(0.5)


def test_binary_failure_is_returned_not_raised():
    k = ReferenceKernel(failing_ops={"common"})
    a, b = _boxes(k, [(0.0, 0.0, 0.0), (0.5, 0.0, 0.0)])
    result = intersect(a, b, kernel=k)
    assert result.is_err
    assert result.error.code == "INTERSECT_FAILED"
    assert isinstance(result.error.cause, KernelError)
