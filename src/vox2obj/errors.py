"""
Error Taxonomy

Conversion failures fall into three families:
- InputError: the source cannot be read or holds nothing to mesh
- GeometryError: a degenerate face, rotation or mesh
- OutputError: the destination cannot be written

InputError and GeometryError are scoped to the offending submodel or file;
the batch always continues. Each family also derives from the builtin
exception callers would expect (ValueError / OSError).
"""


class ConversionError(Exception):
    """Base class for all vox2obj conversion failures."""


class InputError(ConversionError, ValueError):
    """Unreadable or malformed source data (bad .vox, empty model, ...)."""


class GeometryError(ConversionError, ValueError):
    """Degenerate geometry: invalid triangle, singular rotation, empty mesh."""


class MeshValidityError(GeometryError):
    """A mesh is structurally invalid (triangle referencing a missing vertex)."""


class OutputError(ConversionError, OSError):
    """The serialized mesh could not be written to its destination."""
