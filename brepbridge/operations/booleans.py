"""N-ary boolean dispatch.

``fuse_all`` and ``cut_all`` pick one of three ways to combine operands:
a single bulk kernel call (``BATCH``), the kernel's general N-way solver
(``NATIVE``) or a recursive pairwise split (``PAIRWISE``). The choice is
made once per call from the kernel's capability report. When a stage
raises ``KernelError`` the next one in ``BATCH -> NATIVE -> PAIRWISE`` is
tried, so callers only see a failure once every available stage failed.

Results are returned as owned ``NativeHandle`` objects wrapped in a
``Result``; intermediates are released before the call returns and caller
operands are never released.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple, Union

from .. import config
from ..kernel import get_kernel
from ..kernel.interfaces import GeometryKernel
from ..kernel.models import (
    SHAPE_3D_TYPES,
    KernelError,
    Result,
    err,
    kernel_error,
    ok,
    type_cast_error,
    validation_error,
)
from ..memory import DisposalScope, NativeHandle, unwrap
from ..telemetry import traced

_log = logging.getLogger(__name__)

GLUE_MODES = {"none": 0, "common_face": 1, "same_face": 2}


class Strategy(Enum):
    BATCH = "batch"
    NATIVE = "native"
    PAIRWISE = "pairwise"


_STAGE_ORDER = (Strategy.BATCH, Strategy.NATIVE, Strategy.PAIRWISE)


@dataclass(frozen=True)
class BooleanOptions:
    optimisation: str = "none"
    simplify: bool = True
    strategy: str = field(default_factory=lambda: config.DEFAULT_STRATEGY)

    def __post_init__(self) -> None:
        if self.optimisation not in GLUE_MODES:
            raise validation_error(
                "INVALID_OPTIMISATION",
                f"Unknown optimisation mode: {self.optimisation!r}",
                allowed=sorted(GLUE_MODES),
            )
        if self.strategy not in {"native", "pairwise"}:
            raise validation_error(
                "INVALID_STRATEGY",
                f"Unknown strategy: {self.strategy!r}",
                allowed=["native", "pairwise"],
            )

    @property
    def glue_mode(self) -> int:
        return GLUE_MODES[self.optimisation]


OptionsLike = Union[BooleanOptions, Mapping[str, Any], None]


def _coerce_options(options: OptionsLike) -> BooleanOptions:
    if options is None:
        return BooleanOptions()
    if isinstance(options, BooleanOptions):
        return options
    return BooleanOptions(**dict(options))


def _exposes(kernel: GeometryKernel, entry_point: str, flag: str) -> bool:
    return bool(getattr(kernel.capabilities, flag, False)) and callable(getattr(kernel, entry_point, None))


def resolve_strategy(kernel: GeometryKernel, options: OptionsLike = None, operation: str = "fuse") -> Strategy:
    """Decide the first stage for one N-ary call.

    For cuts ``NATIVE`` means the single tool-compound cut; a pairwise
    request falls back to it because cutting has no divide-and-conquer form.
    """
    opts = _coerce_options(options)
    if operation == "cut":
        if opts.strategy != "pairwise" and _exposes(kernel, "cut_all_batch", "batch_booleans"):
            return Strategy.BATCH
        return Strategy.NATIVE
    if opts.strategy == "pairwise":
        return Strategy.PAIRWISE
    if _exposes(kernel, "fuse_all_batch", "batch_booleans"):
        return Strategy.BATCH
    if _exposes(kernel, "general_fuse", "general_fuse"):
        return Strategy.NATIVE
    return Strategy.PAIRWISE


def _fuse_stages(kernel: GeometryKernel, first: Strategy) -> List[Strategy]:
    stages = []
    for stage in _STAGE_ORDER[_STAGE_ORDER.index(first) :]:
        if stage is Strategy.BATCH and not _exposes(kernel, "fuse_all_batch", "batch_booleans"):
            continue
        if stage is Strategy.NATIVE and not _exposes(kernel, "general_fuse", "general_fuse"):
            continue
        stages.append(stage)
    return stages


def _discard(native: Any) -> None:
    scope = DisposalScope(name="discard")
    scope.register(native)
    result = scope.close()
    if result.is_err:
        _log.warning("%s", result.error)


def _finish(kernel: GeometryKernel, native: Any, *, null_code: str, type_code: str, label: str) -> Result[NativeHandle]:
    if native is None or kernel.is_null(native):
        if native is not None:
            _discard(native)
        return err(kernel_error(null_code, f"{label} produced a null shape"))
    try:
        shape_type = kernel.shape_type(native)
    except KernelError as exc:
        _discard(native)
        return err(type_cast_error(type_code, f"{label} result type could not be read: {exc}", cause=exc))
    if shape_type not in SHAPE_3D_TYPES:
        _discard(native)
        return err(
            type_cast_error(
                type_code,
                f"{label} did not yield a 3-D body (got {shape_type})",
                shape_type=shape_type,
            )
        )
    return ok(NativeHandle.adopt(native, label=label))


def _pairwise_fuse(kernel: GeometryKernel, natives: Sequence[Any], glue: str, simplify: bool, depth: int = 0) -> Any:
    if len(natives) == 1:
        return natives[0]
    mid = (len(natives) + 1) // 2
    with DisposalScope(name=f"pairwise[{depth}]") as scope:
        left = _pairwise_fuse(kernel, natives[:mid], glue, False, depth + 1)
        if mid > 1:
            scope.register(left)
        right = _pairwise_fuse(kernel, natives[mid:], glue, False, depth + 1)
        if len(natives) - mid > 1:
            scope.register(right)
        return kernel.fuse(left, right, glue=glue, simplify=simplify)


def _run_stages(
    stages: Sequence[Tuple[Strategy, Callable[[], Any]]], *, failed_code: str, label: str
) -> Tuple[Optional[Any], Optional[KernelError]]:
    failures: List[Tuple[Strategy, KernelError]] = []
    for stage, run in stages:
        try:
            return run(), None
        except KernelError as exc:
            _log.warning("%s stage %s failed: %s", label, stage.value, exc)
            failures.append((stage, exc))
    summary = "; ".join(f"{stage.value}: {exc}" for stage, exc in failures)
    return None, kernel_error(
        failed_code,
        f"{label} failed in every stage ({summary})",
        cause=failures[0][1] if failures else None,
        stages=[stage.value for stage, _ in failures],
        errors=[exc.to_dict() for _, exc in failures],
    )


def fuse_all(operands: Sequence[Any], options: OptionsLike = None, *, kernel: GeometryKernel | None = None) -> Result[Any]:
    """Fuse every operand into one shape.

    An empty list is a validation error and a single operand is returned
    as is without touching the kernel.
    """
    items = list(operands or [])
    if not items:
        return err(validation_error("FUSE_ALL_EMPTY", "fuse_all() requires at least one operand"))
    if len(items) == 1:
        return ok(items[0])

    opts = _coerce_options(options)
    k = kernel or get_kernel()
    natives = [unwrap(x) for x in items]
    first = resolve_strategy(k, opts, operation="fuse")
    glue = opts.optimisation

    runners = {
        Strategy.BATCH: lambda: k.fuse_all_batch(natives, glue=glue, simplify=opts.simplify),
        Strategy.NATIVE: lambda: k.general_fuse(natives, glue=glue, simplify=opts.simplify),
        Strategy.PAIRWISE: lambda: _pairwise_fuse(k, natives, glue, opts.simplify),
    }
    stages = [(s, runners[s]) for s in _fuse_stages(k, first)]

    with traced("booleans.fuse_all", count=len(natives), strategy=first.value):
        native, failure = _run_stages(stages, failed_code="FUSE_ALL_FAILED", label="fuse_all")
    if failure is not None:
        return err(failure)
    return _finish(k, native, null_code="FUSE_FAILED", type_code="FUSE_ALL_NOT_3D", label="fuse_all")


def _cut_with_compound(k: GeometryKernel, base: Any, tools: Sequence[Any], opts: BooleanOptions) -> Any:
    if len(tools) == 1:
        return k.cut(base, tools[0], glue=opts.optimisation, simplify=opts.simplify)
    with DisposalScope(name="cut_all.tools") as scope:
        compound = scope.register(k.make_compound(tools))
        return k.cut(base, compound, glue=opts.optimisation, simplify=opts.simplify)


def cut_all(base: Any, tools: Sequence[Any], options: OptionsLike = None, *, kernel: GeometryKernel | None = None) -> Result[Any]:
    """Subtract every tool from ``base``; no tools returns ``base`` as is."""
    if base is None:
        return err(validation_error("CUT_ALL_NO_BASE", "cut_all() requires a base shape"))
    items = list(tools or [])
    if not items:
        return ok(base)

    opts = _coerce_options(options)
    k = kernel or get_kernel()
    base_native = unwrap(base)
    natives = [unwrap(x) for x in items]
    first = resolve_strategy(k, opts, operation="cut")

    stages: List[Tuple[Strategy, Callable[[], Any]]] = []
    if first is Strategy.BATCH:
        stages.append(
            (
                Strategy.BATCH,
                lambda: k.cut_all_batch(base_native, natives, glue=opts.optimisation, simplify=opts.simplify),
            )
        )
    stages.append((Strategy.NATIVE, lambda: _cut_with_compound(k, base_native, natives, opts)))

    with traced("booleans.cut_all", count=len(natives), strategy=first.value):
        native, failure = _run_stages(stages, failed_code="CUT_ALL_FAILED", label="cut_all")
    if failure is not None:
        return err(failure)
    return _finish(k, native, null_code="CUT_FAILED", type_code="CUT_ALL_NOT_3D", label="cut_all")


def _binary(op: str, code: str, a: Any, b: Any, options: OptionsLike, kernel: GeometryKernel | None) -> Result[Any]:
    opts = _coerce_options(options)
    k = kernel or get_kernel()
    left, right = unwrap(a), unwrap(b)
    try:
        native = getattr(k, op)(left, right, glue=opts.optimisation, simplify=opts.simplify)
    except KernelError as exc:
        return err(kernel_error(f"{code}_FAILED", f"{op} failed: {exc}", cause=exc))
    return _finish(k, native, null_code=f"{code}_FAILED", type_code=f"{code}_NOT_3D", label=op)


def fuse(a: Any, b: Any, options: OptionsLike = None, *, kernel: GeometryKernel | None = None) -> Result[Any]:
    return _binary("fuse", "FUSE", a, b, options, kernel)


def cut(base: Any, tool: Any, options: OptionsLike = None, *, kernel: GeometryKernel | None = None) -> Result[Any]:
    return _binary("cut", "CUT", base, tool, options, kernel)


def intersect(a: Any, b: Any, options: OptionsLike = None, *, kernel: GeometryKernel | None = None) -> Result[Any]:
    return _binary("common", "INTERSECT", a, b, options, kernel)
