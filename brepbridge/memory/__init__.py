from .finalizer import (
    ReleaseState,
    SafetyNet,
    default_safety_net,
    gc_with_object,
    register_for_cleanup,
    unregister_from_cleanup,
)
from .handle import NativeHandle, unwrap
from .scope import DisposalScope, local_gc, with_scope

__all__ = [
    "NativeHandle",
    "DisposalScope",
    "ReleaseState",
    "SafetyNet",
    "default_safety_net",
    "gc_with_object",
    "local_gc",
    "register_for_cleanup",
    "unregister_from_cleanup",
    "unwrap",
    "with_scope",
]
