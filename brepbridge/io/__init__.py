from .staging import (
    export_shape,
    export_to_path,
    import_from_path,
    import_shape,
    staged_file,
    unique_io_filename,
)

__all__ = [
    "unique_io_filename",
    "staged_file",
    "export_shape",
    "import_shape",
    "export_to_path",
    "import_from_path",
]
