from .booleans import (
    GLUE_MODES,
    BooleanOptions,
    Strategy,
    cut,
    cut_all,
    fuse,
    fuse_all,
    intersect,
    resolve_strategy,
)

__all__ = [
    "GLUE_MODES",
    "BooleanOptions",
    "Strategy",
    "resolve_strategy",
    "fuse_all",
    "cut_all",
    "fuse",
    "cut",
    "intersect",
]
