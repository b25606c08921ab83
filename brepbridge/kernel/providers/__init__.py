from .null_provider import NullKernel
from .reference_provider import ReferenceKernel

__all__ = ["NullKernel", "ReferenceKernel"]
