"""
In-Process Transport

Drives a ServerSession directly instead of over HTTP. Used by
`dbtaps copy` when both databases are reachable from the same machine;
the transfer still goes through the same chunk, checksum and retry path.
"""

import logging
from typing import Optional

from .. import COMPATIBLE_VERSION
from ..api.session import ServerSession
from ..storage.database import Database
from ..transfer.state import Chunk, ChunkResult, PulledChunk, TableInventory, TransferState
from ..utils import safe_url
from .transport import SessionTransport

logger = logging.getLogger(__name__)


class LocalSessionTransport(SessionTransport):
    """SessionTransport whose peer is a database opened in this process."""

    def __init__(self, peer_db: Database):
        self.peer_db = peer_db
        self.session: Optional[ServerSession] = None

    @property
    def description(self) -> str:
        return safe_url(self.peer_db.url)

    def _session(self) -> ServerSession:
        if self.session is None:
            raise RuntimeError("No session is open")
        return self.session

    async def verify_compatibility(self):
        logger.debug(f"Local peer speaks protocol {COMPATIBLE_VERSION}")

    async def open_session(self):
        await self.peer_db.connect()
        self.session = ServerSession(self.peer_db)

    async def close_session(self):
        if self.session is not None:
            self.session.close()
            self.session = None

    async def push_schema(self, blob: bytes):
        await self._session().push_schema(blob)

    async def pull_schema(self) -> bytes:
        return await self._session().pull_schema()

    async def push_indexes(self, blob: bytes):
        await self._session().push_indexes(blob)

    async def pull_indexes(self) -> bytes:
        return await self._session().pull_indexes()

    async def push_reset_sequences(self):
        await self._session().reset_sequences()

    async def push_table_inventory(self, inventory: TableInventory):
        self._session().push_table_inventory(inventory)

    async def pull_table_inventory(self) -> TableInventory:
        return await self._session().pull_table_inventory()

    async def push_table_chunk(self, state: TransferState, chunk: Chunk) -> ChunkResult:
        return await self._session().push_table_chunk(state.copy(), chunk.payload, chunk.checksum)

    async def pull_table_chunk(self, state: TransferState) -> PulledChunk:
        return await self._session().pull_table_chunk(state.copy())
