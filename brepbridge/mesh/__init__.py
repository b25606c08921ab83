from .cache import (
    MeshCache,
    build_edge_mesh_cache_key,
    build_mesh_cache_key,
    clear_mesh_cache,
    create_mesh_cache,
    default_mesh_cache,
    set_mesh_cache_size,
)
from .extract import HASH_UPPER, mesh_shape, mesh_shape_edges
from .models import EdgeGroup, EdgeMesh, FaceGroup, ShapeMesh

__all__ = [
    "MeshCache",
    "ShapeMesh",
    "EdgeMesh",
    "FaceGroup",
    "EdgeGroup",
    "HASH_UPPER",
    "mesh_shape",
    "mesh_shape_edges",
    "build_mesh_cache_key",
    "build_edge_mesh_cache_key",
    "default_mesh_cache",
    "create_mesh_cache",
    "clear_mesh_cache",
    "set_mesh_cache_size",
]
