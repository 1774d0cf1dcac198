"""
Server Session

The peer's half of a transfer, independent of how requests arrive. The
FastAPI app and the in-process LocalSessionTransport both drive it.

One ServerSession lives for one client transfer. It keeps a
DestinationTableStream per pushed table; pulled chunks are produced
statelessly from the TransferState the client sends.
"""

import logging
import uuid
from typing import Dict, List, Optional

from ..errors import CursorMismatch
from ..schema import tool as schema_tool
from ..storage.database import Database
from ..transfer.codec import ChunkCodec
from ..transfer.state import (
    ChunkResult, Ok, PulledChunk, Retry, TableInventory, TransferState,
)
from ..transfer.stream import DestinationTableStream, SourceTableStream

logger = logging.getLogger(__name__)


class ServerSession:
    """Peer-side state of one client transfer."""

    def __init__(self, db: Database, session_id: Optional[str] = None,
                 codec: Optional[ChunkCodec] = None):
        self.db = db
        self.session_id = session_id or uuid.uuid4().hex
        self.codec = codec or ChunkCodec()
        self.streams: Dict[str, DestinationTableStream] = {}
        self.inventory = TableInventory()

        # Statistics
        self.chunks_received = 0
        self.chunks_rejected = 0
        self.chunks_served = 0

    @property
    def uri(self) -> str:
        return f"/sessions/{self.session_id}"

    # === Schema and indexes ===

    async def push_schema(self, blob: bytes) -> List[str]:
        self.streams.clear()
        return await schema_tool.load_schema(self.db, blob)

    async def pull_schema(self) -> bytes:
        return await schema_tool.dump_schema(self.db)

    async def push_indexes(self, blob: bytes) -> List[str]:
        return await schema_tool.load_indexes(self.db, blob)

    async def pull_indexes(self) -> bytes:
        return await schema_tool.dump_indexes(self.db)

    async def reset_sequences(self) -> List[str]:
        return await schema_tool.reset_sequences(self.db)

    # === Inventory ===

    def push_table_inventory(self, inventory: TableInventory):
        """Remember what the client is about to send (logging only)."""
        self.inventory = inventory
        logger.info(f"Session {self.session_id[:8]}: expecting {len(inventory)} tables, "
                    f"{inventory.total_rows:,} rows")

    async def pull_table_inventory(self) -> TableInventory:
        return await self.db.table_inventory()

    # === Table data ===

    def _stream_for(self, state: TransferState) -> DestinationTableStream:
        stream = self.streams.get(state.table_name)
        if stream is None:
            # A new stream starts wherever the client says it left off
            stream = DestinationTableStream(
                self.db,
                TransferState(state.table_name, cursor=state.cursor,
                              chunk_size=state.chunk_size),
                self.codec,
            )
            self.streams[state.table_name] = stream
        return stream

    async def push_table_chunk(self, state: TransferState, payload: bytes,
                               checksum: str) -> ChunkResult:
        """
        Apply a chunk pushed by the client.

        Returns Retry (HTTP 412) when the payload does not match its
        checksum, and Fatal (HTTP 422) when it matches but cannot be
        decoded; no state moves in either case.

        Raises:
            CursorMismatch: the chunk does not start at our cursor.
        """
        if not self.codec.verify(payload, checksum):
            self.chunks_rejected += 1
            logger.warning(f"Checksum mismatch on {state.table_name} at {state.cursor}")
            return Retry('checksum mismatch')

        stream = self._stream_for(state)

        if stream.is_duplicate(state.cursor, checksum):
            logger.info(f"Duplicate chunk for {state.table_name} at {state.cursor}, "
                        f"already applied")
            return Ok(0)

        if state.cursor != stream.cursor:
            raise CursorMismatch(state.table_name, stream.cursor, state.cursor)

        stream.state.chunk_size = state.chunk_size
        result = await stream.apply(payload, checksum)
        if isinstance(result, Ok):
            self.chunks_received += 1
            if stream.complete:
                del self.streams[state.table_name]
            self._log_table_progress(stream)
        else:
            self.chunks_rejected += 1
        return result

    async def pull_table_chunk(self, state: TransferState) -> PulledChunk:
        """Produce the chunk described by the client's state."""
        stream = SourceTableStream.from_state(self.db, state, self.codec)
        chunk = await stream.produce()
        self.chunks_served += 1
        return PulledChunk(payload=chunk.payload, checksum=chunk.checksum)

    def _log_table_progress(self, stream: DestinationTableStream):
        expected = self.inventory.counts.get(stream.table_name)
        if expected is not None and stream.cursor == expected:
            logger.info(f"Session {self.session_id[:8]}: received all {expected:,} rows "
                        f"of {stream.table_name}")

    def close(self):
        """Release per-table state."""
        self.streams.clear()
        logger.debug(f"Session {self.session_id[:8]} closed: "
                     f"{self.chunks_received} chunks received, "
                     f"{self.chunks_rejected} rejected, {self.chunks_served} served")

    def get_stats(self) -> dict:
        return {
            'session_id': self.session_id,
            'open_streams': len(self.streams),
            'chunks_received': self.chunks_received,
            'chunks_rejected': self.chunks_rejected,
            'chunks_served': self.chunks_served,
        }
