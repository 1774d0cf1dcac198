"""
Transfer Module - Adaptive Chunked Table Transfer

Codec, chunk sizer, table streams and the orchestrator that drives them.
"""

from .codec import ChunkCodec
from .sizer import ChunkSizer
from .state import (
    Chunk, ChunkResult, Fatal, Ok, PulledChunk, Retry,
    TableDescriptor, TableInventory, TransferState,
)
from .stream import DestinationTableStream, SourceTableStream
from .progress import TableProgress, TransferProgress
from .orchestrator import TransferOrchestrator

__all__ = [
    'ChunkCodec',
    'ChunkSizer',
    'Chunk',
    'ChunkResult',
    'Fatal',
    'Ok',
    'PulledChunk',
    'Retry',
    'TableDescriptor',
    'TableInventory',
    'TransferState',
    'DestinationTableStream',
    'SourceTableStream',
    'TableProgress',
    'TransferProgress',
    'TransferOrchestrator',
]
