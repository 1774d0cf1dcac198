"""
Table Streams

A table stream owns one table's TransferState and moves its cursor. There
are exactly two kinds, chosen at construction:

- SourceTableStream: produce() reads the next chunk from the source table
- DestinationTableStream: apply() verifies and inserts a received chunk

State machine (both kinds):
```
    Active --(a cycle yields zero rows)--> Complete
```
Complete is terminal.

The cursor only moves after the consuming side has durably committed the
chunk. While the error flag is set, the same chunk is retried unchanged.
"""

import logging
import time
from typing import TYPE_CHECKING, Optional

from ..errors import CorruptedData, UndecodableChunk
from ..utils import format_size
from .codec import ChunkCodec
from .state import Chunk, ChunkResult, Fatal, Ok, Retry, TransferState

if TYPE_CHECKING:
    from ..storage.database import Database

logger = logging.getLogger(__name__)


class TableStream:
    """Shared cursor bookkeeping for both stream kinds."""

    def __init__(self, db: 'Database', state: TransferState,
                 codec: Optional[ChunkCodec] = None):
        self.db = db
        self.state = state
        self.codec = codec or ChunkCodec()
        self._complete = False

    @classmethod
    def from_state(cls, db: 'Database', state: TransferState,
                   codec: Optional[ChunkCodec] = None):
        """Resume a stream from a (possibly deserialized) TransferState."""
        return cls(db, state.copy(), codec)

    @property
    def table_name(self) -> str:
        return self.state.table_name

    @property
    def cursor(self) -> int:
        return self.state.cursor

    @property
    def complete(self) -> bool:
        return self._complete

    def advance(self, row_count: int):
        """Move the cursor past rows the consuming side has committed."""
        if row_count < 0:
            raise ValueError(f"Cannot advance by {row_count} rows")
        if self._complete:
            raise RuntimeError(f"Stream for {self.table_name} is already complete")
        self.state.cursor += row_count
        self.state.error = False

    def mark_error(self):
        """Flag the chunk in flight for an unchanged retry."""
        self.state.error = True

    def __repr__(self) -> str:
        return (f"{type(self).__name__}({self.table_name!r}, cursor={self.cursor}, "
                f"chunk_size={self.state.chunk_size}, complete={self._complete})")


class SourceTableStream(TableStream):
    """Reads chunks from the source table."""

    async def produce(self) -> Chunk:
        """
        Read `chunk_size` rows at `cursor`.

        A pure function of (table, cursor, chunk_size): calling it again for
        the same state returns identical bytes. A chunk with zero rows
        completes the stream.
        """
        started = time.perf_counter()
        columns, rows = await self.db.fetch_rows(
            self.table_name, self.state.cursor, self.state.chunk_size
        )
        payload, row_count = self.codec.encode(rows, columns)
        checksum = self.codec.checksum(payload)
        elapsed = time.perf_counter() - started

        self.state.checksum = checksum
        if row_count == 0:
            self._complete = True

        logger.debug(f"Produced {row_count} rows of {self.table_name} at {self.state.cursor} "
                     f"({format_size(len(payload))}, {elapsed:.3f}s)")
        return Chunk(
            cursor=self.state.cursor,
            columns=columns,
            rows=tuple(rows),
            payload=payload,
            checksum=checksum,
            elapsed=elapsed,
        )


class DestinationTableStream(TableStream):
    """Writes received chunks into the destination table."""

    def __init__(self, db: 'Database', state: TransferState,
                 codec: Optional[ChunkCodec] = None):
        super().__init__(db, state, codec)
        # Last chunk applied, so a verbatim resend of it can be acknowledged
        self.last_cursor: Optional[int] = None
        self.last_checksum: Optional[str] = None

    def is_duplicate(self, cursor: int, checksum: str) -> bool:
        """True if (cursor, checksum) is the chunk applied most recently."""
        return (self.last_cursor is not None
                and cursor == self.last_cursor
                and checksum == self.last_checksum)

    async def apply(self, payload: bytes, checksum: str) -> ChunkResult:
        """
        Verify, then insert, a received chunk.

        Verification strictly precedes mutation: a corrupted chunk leaves
        the destination table untouched and returns Retry, or Fatal when
        the bytes match their checksum but cannot be decoded. On success the
        cursor advances by the chunk's row count; zero rows completes the
        stream.
        """
        if self._complete:
            raise RuntimeError(f"Stream for {self.table_name} is already complete")

        try:
            columns, rows = self.codec.decode(payload, checksum)
        except UndecodableChunk as e:
            logger.error(f"Undecodable chunk for {self.table_name} at {self.cursor}: {e}")
            return Fatal(str(e))
        except CorruptedData as e:
            logger.warning(f"Corrupted chunk for {self.table_name} at {self.cursor}: {e}")
            self.mark_error()
            return Retry(str(e))

        cursor = self.state.cursor
        if rows:
            await self.db.insert_rows(self.table_name, columns, rows)
            self.advance(len(rows))
        else:
            self.state.error = False
            self._complete = True

        self.state.checksum = checksum
        self.last_cursor = cursor
        self.last_checksum = checksum
        return Ok(len(rows))
