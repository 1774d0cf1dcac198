"""
Transfer Orchestrator

Drives a whole transfer against one peer session:

Send (push):
1. Verify protocol compatibility
2. Push schema
3. Push every table's data, chunk by chunk
4. Push indexes
5. Ask the peer to reset its sequence counters

Receive (pull):
1. Verify protocol compatibility
2. Pull schema, apply locally
3. Pull every table's data, chunk by chunk
4. Pull indexes, apply locally
5. Reset local sequence counters

Design Decision: Retry Policy
=============================
- A chunk rejected by the peer (checksum mismatch on arrival) or found
  corrupted locally is retried verbatim: same cursor, same size, same
  bytes. Nothing else is retried inside the chunk loop.
- A chunk that matches its checksum but cannot be decoded is Fatal: the
  run aborts with TransferAborted.
- Retries are unbounded by default since the chunk never changes and
  corruption is assumed transient; `max_chunk_retries` caps them.
- The inventory fetch on receive is retried once, then the run aborts.
- Any other error unwinds the whole transfer.

Chunks of one table are strictly sequential: chunk N+1 is never produced
before chunk N is accepted.

stop() takes effect at the next boundary: after a chunk is accepted,
before a table starts, or before the next phase.
"""

import logging
import time
from typing import TYPE_CHECKING, Dict, Optional

from ..config import Config
from ..errors import (
    ChunkRetriesExhausted, ServerError, TransferAborted, TransferCancelled,
    TransportError,
)
from ..schema import tool as schema_tool
from ..utils import format_number
from .codec import ChunkCodec
from .progress import ProgressCallback, TableProgress, TransferProgress
from .sizer import ChunkSizer
from .state import Fatal, Ok, TableDescriptor, TableInventory, TransferState
from .stream import DestinationTableStream, SourceTableStream

if TYPE_CHECKING:
    from ..client.transport import SessionTransport
    from ..storage.database import Database

logger = logging.getLogger(__name__)

INVENTORY_RETRIES = 1


class TransferOrchestrator:
    """
    Moves one database to or from a peer.

    Args:
        db: The local database (source on send, destination on receive)
        transport: Session transport to the peer
        config: Chunk size, sizer band and retry bound
        progress_callback: Called with a TransferProgress after every step
        resume: TransferState per table name to continue from
    """

    def __init__(self, db: 'Database', transport: 'SessionTransport',
                 config: Optional[Config] = None,
                 progress_callback: Optional[ProgressCallback] = None,
                 resume: Optional[Dict[str, TransferState]] = None,
                 codec: Optional[ChunkCodec] = None):
        self.db = db
        self.transport = transport
        self.config = config or Config()
        self.progress_callback = progress_callback
        self.resume = dict(resume or {})
        self.codec = codec or ChunkCodec()
        self.sizer = ChunkSizer(
            target_low=self.config.target_time_low,
            target_high=self.config.target_time_high,
            max_size=self.config.max_chunk_size,
        )
        self.progress = TransferProgress(direction='send')
        self._stop_requested = False

    def stop(self):
        """Stop at the next chunk, table or phase boundary (raises TransferCancelled)."""
        self._stop_requested = True

    # === Whole transfers ===

    async def send(self) -> TransferProgress:
        """Push schema, data, indexes and a sequence reset to the peer."""
        self.progress = TransferProgress(direction='send')
        await self._verify()

        await self._run_in_session(
            self.send_schema,
            self.send_data,
            self.send_indexes,
            self.send_reset_sequences,
        )
        return self._finish()

    async def receive(self) -> TransferProgress:
        """Pull schema, data and indexes from the peer; reset local sequences."""
        self.progress = TransferProgress(direction='receive')
        await self._verify()

        await self._run_in_session(
            self.receive_schema,
            self.receive_data,
            self.receive_indexes,
            self.reset_local_sequences,
        )
        return self._finish()

    async def _verify(self):
        self._set_phase('verifying')
        await self.transport.verify_compatibility()

    async def _run_in_session(self, *steps):
        """Run steps inside a peer session that is closed on every exit path."""
        await self.transport.open_session()
        try:
            for step in steps:
                self._check_stop()
                await step()
        except BaseException:
            await self._close_session_after_failure()
            raise
        await self.transport.close_session()

    async def _close_session_after_failure(self):
        try:
            await self.transport.close_session()
        except Exception as e:
            logger.warning(f"Could not close session on {self.transport.description}: {e}")

    def _finish(self) -> TransferProgress:
        self._set_phase('complete')
        logger.info(f"Transferred {format_number(self.progress.transferred_rows)} rows "
                    f"in {self.progress.elapsed_seconds:.1f}s "
                    f"({self.progress.retries} retried chunks)")
        return self.progress

    # === Send path ===

    async def send_schema(self):
        self._set_phase('schema')
        logger.info("Sending schema")
        blob = await schema_tool.dump_schema(self.db)
        await self.transport.push_schema(blob)

    async def send_indexes(self):
        self._set_phase('indexes')
        logger.info("Sending indexes")
        blob = await schema_tool.dump_indexes(self.db)
        await self.transport.push_indexes(blob)

    async def send_reset_sequences(self):
        self._set_phase('sequences')
        logger.info("Resetting sequences")
        await self.transport.push_reset_sequences()

    async def send_data(self):
        self._set_phase('data')
        logger.info("Sending data")

        inventory = await self.db.table_inventory()
        self._start_inventory(inventory)
        await self.transport.push_table_inventory(inventory)

        for descriptor in inventory.descriptors():
            await self.send_table(descriptor)

    async def send_table(self, descriptor: TableDescriptor) -> TransferState:
        """Push one table until a produced chunk comes back empty."""
        stream = SourceTableStream.from_state(self.db, self._initial_state(descriptor), self.codec)
        table_progress = self._start_table(descriptor, stream.state)
        self._check_stop(stream.state)

        while True:
            started = time.perf_counter()
            chunk = await stream.produce()
            if stream.complete:
                break

            await self._push_until_accepted(stream, chunk, table_progress)
            elapsed = time.perf_counter() - started

            stream.advance(chunk.row_count)
            stream.state.chunk_size = self.sizer.next_size(stream.state.chunk_size, elapsed)
            self._chunk_done(table_progress, stream.state, chunk.row_count)

        return self._finish_table(table_progress, stream.state)

    async def _push_until_accepted(self, stream: SourceTableStream, chunk,
                                   table_progress: TableProgress):
        """Send the same chunk until the peer accepts it."""
        attempts = 0
        while True:
            attempts += 1
            result = await self.transport.push_table_chunk(stream.state, chunk)
            if isinstance(result, Ok):
                stream.state.error = False
                return
            if isinstance(result, Fatal):
                raise TransferAborted(result.reason)

            stream.mark_error()
            table_progress.retries += 1
            logger.warning(f"{stream.table_name}: chunk at row {chunk.cursor} rejected "
                           f"({result.reason}), resending")
            self._check_retry_bound(stream.state, attempts)

    # === Receive path ===

    async def receive_schema(self):
        self._set_phase('schema')
        logger.info("Receiving schema")
        blob = await self.transport.pull_schema()
        await schema_tool.load_schema(self.db, blob)

    async def receive_indexes(self):
        self._set_phase('indexes')
        logger.info("Receiving indexes")
        blob = await self.transport.pull_indexes()
        await schema_tool.load_indexes(self.db, blob)

    async def reset_local_sequences(self):
        self._set_phase('sequences')
        logger.info("Resetting sequences")
        await schema_tool.reset_sequences(self.db)

    async def receive_data(self):
        self._set_phase('data')
        logger.info("Receiving data")

        inventory = await self._fetch_remote_inventory()
        self._start_inventory(inventory)

        for descriptor in inventory.descriptors():
            await self.receive_table(descriptor)

    async def _fetch_remote_inventory(self) -> TableInventory:
        attempts = 0
        while True:
            try:
                return await self.transport.pull_table_inventory()
            except (TransportError, ServerError) as e:
                attempts += 1
                if attempts > INVENTORY_RETRIES:
                    raise TransferAborted(
                        f"Unable to fetch tables information from "
                        f"{self.transport.description}. Please check the server log."
                    ) from e
                logger.warning(f"Fetching tables information failed ({e}), retrying")

    async def receive_table(self, descriptor: TableDescriptor) -> TransferState:
        """Pull one table until the peer sends an empty chunk."""
        stream = DestinationTableStream.from_state(
            self.db, self._initial_state(descriptor), self.codec
        )
        table_progress = self._start_table(descriptor, stream.state)
        attempts = 0
        self._check_stop(stream.state)

        while True:
            started = time.perf_counter()
            pulled = await self.transport.pull_table_chunk(stream.state)
            result = await stream.apply(pulled.payload, pulled.checksum)

            if isinstance(result, Fatal):
                raise TransferAborted(result.reason)
            if not isinstance(result, Ok):
                # Same cursor, same size: the peer resends identical bytes
                attempts += 1
                table_progress.retries += 1
                self._check_retry_bound(stream.state, attempts)
                continue

            attempts = 0
            if stream.complete:
                break

            elapsed = time.perf_counter() - started
            stream.state.chunk_size = self.sizer.next_size(stream.state.chunk_size, elapsed)
            self._chunk_done(table_progress, stream.state, result.row_count)

        return self._finish_table(table_progress, stream.state)

    # === Bookkeeping ===

    def _initial_state(self, descriptor: TableDescriptor) -> TransferState:
        state = self.resume.pop(descriptor.name, None)
        if state is not None:
            logger.info(f"Resuming {descriptor.name} at row {state.cursor}")
            return state
        return TransferState(descriptor.name, chunk_size=self.config.chunk_size)

    def _check_retry_bound(self, state: TransferState, attempts: int):
        limit = self.config.max_chunk_retries
        if limit is not None and attempts > limit:
            raise ChunkRetriesExhausted(state.table_name, state.cursor, attempts)

    def _start_inventory(self, inventory: TableInventory):
        self.progress.total_tables = len(inventory)
        self.progress.total_rows = inventory.total_rows
        logger.info(f"{len(inventory)} tables, {format_number(inventory.total_rows)} records")
        self._notify()

    def _start_table(self, descriptor: TableDescriptor,
                     state: TransferState) -> TableProgress:
        table_progress = TableProgress(
            table_name=descriptor.name,
            total_rows=descriptor.row_count,
            transferred_rows=state.cursor,
            chunk_size=state.chunk_size,
        )
        self.progress.tables[descriptor.name] = table_progress
        self.progress.current_table = descriptor.name
        self._notify()
        return table_progress

    def _chunk_done(self, table_progress: TableProgress, state: TransferState,
                    row_count: int):
        table_progress.transferred_rows += row_count
        table_progress.chunks += 1
        table_progress.chunk_size = state.chunk_size
        logger.debug(f"{state.table_name}: {row_count} rows, cursor {state.cursor}, "
                     f"next chunk {state.chunk_size}")
        self._notify()
        self._check_stop(state)

    def _check_stop(self, state: Optional[TransferState] = None):
        if self._stop_requested:
            raise TransferCancelled(state.copy() if state is not None else None)

    def _finish_table(self, table_progress: TableProgress,
                      state: TransferState) -> TransferState:
        table_progress.complete = True
        logger.info(f"{state.table_name}: {format_number(state.cursor)} rows done")
        self._notify()
        return state

    def _set_phase(self, phase: str):
        self.progress.phase = phase
        self._notify()

    def _notify(self):
        if self.progress_callback:
            self.progress_callback(self.progress)
