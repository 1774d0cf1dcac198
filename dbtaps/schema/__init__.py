"""
Schema Module - Schema and Index Blobs

Produces and applies the opaque schema/index blobs exchanged with a peer.
"""

from .tool import (
    dump_schema, load_schema, dump_indexes, load_indexes, reset_sequences,
)

__all__ = [
    'dump_schema',
    'load_schema',
    'dump_indexes',
    'load_indexes',
    'reset_sequences',
]
