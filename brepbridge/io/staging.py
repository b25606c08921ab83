"""Import/export through the kernel's virtual filesystem.

Concurrent callers may share one kernel, so every staged file gets a
name unique to its call and is removed before the call returns, whether
it succeeded or not.
"""

from __future__ import annotations

import itertools
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

from ..kernel import get_kernel
from ..kernel.interfaces import GeometryKernel
from ..kernel.models import KernelError, Result, err, io_error, ok, validation_error
from ..memory import NativeHandle, unwrap
from ..telemetry import traced

_log = logging.getLogger(__name__)

_COUNTER = itertools.count(1)
_COUNTER_LOCK = threading.Lock()


def _fmt_token(fmt: str | None, path: str = "") -> str:
    token = str(fmt or "").strip().lower().lstrip(".")
    if token:
        return token
    return Path(path).suffix.lower().lstrip(".")


def unique_io_filename(prefix: str = "io", ext: str = "bin") -> str:
    with _COUNTER_LOCK:
        serial = next(_COUNTER)
    stem = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in str(prefix or "io"))
    suffix = str(ext or "bin").strip().lstrip(".")
    return f"{stem}_{serial:06d}_{uuid.uuid4().hex[:8]}.{suffix}"


@contextmanager
def staged_file(kernel: GeometryKernel, prefix: str, ext: str, data: Optional[bytes] = None) -> Iterator[str]:
    """Yield a fresh virtual file name, optionally pre-filled with ``data``."""
    name = unique_io_filename(prefix, ext)
    try:
        if data is not None:
            kernel.write_file(name, bytes(data))
        yield name
    finally:
        try:
            kernel.unlink(name)
        except KernelError as exc:
            _log.warning("Could not remove staged file %s: %s", name, exc)


def export_shape(shape: Any, fmt: str, *, kernel: GeometryKernel | None = None) -> Result[bytes]:
    token = _fmt_token(fmt)
    if not token:
        return err(validation_error("EXPORT_FORMAT_MISSING", "export_shape() requires a format"))
    code = token.upper()
    k = kernel or get_kernel()
    native = unwrap(shape)

    with traced("io.export_shape", format=token):
        with staged_file(k, "export", token) as name:
            try:
                written = k.write_shape(native, name, token)
            except KernelError as exc:
                return err(io_error(f"{code}_EXPORT_FAILED", f"{token} export failed: {exc}", cause=exc, format=token))
            if not written or not k.exists(name):
                return err(io_error(f"{code}_EXPORT_FAILED", f"{token} writer reported failure", format=token))
            try:
                data = k.read_file(name)
            except KernelError as exc:
                return err(
                    io_error(f"{code}_FILE_READ_ERROR", f"Could not read staged {token} file: {exc}", cause=exc, format=token)
                )
    return ok(bytes(data))


def import_shape(data: bytes, fmt: str, *, kernel: GeometryKernel | None = None) -> Result[NativeHandle]:
    token = _fmt_token(fmt)
    if not token:
        return err(validation_error("IMPORT_FORMAT_MISSING", "import_shape() requires a format"))
    code = token.upper()
    k = kernel or get_kernel()

    with traced("io.import_shape", format=token, size=len(data or b"")):
        try:
            with staged_file(k, "import", token, data=bytes(data or b"")) as name:
                native = k.read_shape(name, token)
        except KernelError as exc:
            return err(io_error(f"{code}_IMPORT_FAILED", f"{token} import failed: {exc}", cause=exc, format=token))
    if native is None or k.is_null(native):
        return err(io_error(f"{code}_IMPORT_FAILED", f"{token} import produced a null shape", format=token))
    return ok(NativeHandle.adopt(native, label=f"import:{token}"))


def export_to_path(shape: Any, path: str, fmt: str | None = None, *, kernel: GeometryKernel | None = None) -> Result[str]:
    out_path = str(path or "").strip()
    if not out_path:
        return err(validation_error("INVALID_OUTPUT_PATH", "Output path is empty"))
    result = export_shape(shape, _fmt_token(fmt, out_path), kernel=kernel)
    if result.is_err:
        return err(result.error)
    os.makedirs(os.path.dirname(os.path.abspath(out_path)) or ".", exist_ok=True)
    try:
        with open(out_path, "wb") as fh:
            fh.write(result.value)
    except OSError as exc:
        return err(io_error("FILE_WRITE_ERROR", f"Could not write {out_path}: {exc}", cause=exc, path=out_path))
    return ok(out_path)


def import_from_path(path: str, fmt: str | None = None, *, kernel: GeometryKernel | None = None) -> Result[NativeHandle]:
    src = str(path or "").strip()
    if not src or not os.path.isfile(src):
        return err(io_error("PATH_NOT_FOUND", f"Input path not found: {src}", path=src))
    try:
        with open(src, "rb") as fh:
            data = fh.read()
    except OSError as exc:
        return err(io_error("FILE_READ_ERROR", f"Could not read {src}: {exc}", cause=exc, path=src))
    return import_shape(data, _fmt_token(fmt, src), kernel=kernel)
