from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
    raw = str(os.getenv(name, "")).strip().lower()
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = str(os.getenv(name, "")).strip()
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    return max(int(minimum), value)


SAFETY_NET_ENABLED = _env_bool("BREP_SAFETY_NET", True)
SAFETY_NET_ATEXIT = _env_bool("BREP_SAFETY_NET_ATEXIT", False)
MESH_CACHE_SIZE = _env_int("BREP_MESH_CACHE_SIZE", 128, minimum=1)
DEFAULT_STRATEGY = str(os.getenv("BREP_DEFAULT_STRATEGY", "native") or "native").strip().lower()
if DEFAULT_STRATEGY not in {"native", "pairwise"}:
    DEFAULT_STRATEGY = "native"
KERNEL_BACKEND = str(os.getenv("BREP_KERNEL", "auto") or "auto").strip().lower()
if KERNEL_BACKEND not in {"auto", "reference", "freecad", "null"}:
    KERNEL_BACKEND = "auto"
PERF_THRESHOLD_MS = _env_int("BREP_PERF_THRESHOLD_MS", 50)
LOG_LEVEL = str(os.getenv("BREP_LOG_LEVEL", "INFO") or "INFO").strip().upper()
LOG_DIR = str(os.getenv("BREP_LOG_DIR", "") or "").strip()
LOG_STDOUT = _env_bool("BREP_LOG_STDOUT", False)
