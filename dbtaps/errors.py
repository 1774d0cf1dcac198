"""
Error Taxonomy

Only a checksum mismatch (CorruptedData) is ever recovered from, inside the
chunk loop. An UndecodableChunk is not: its bytes are already verified.
Everything else unwinds the whole transfer and is reported to the user.
"""

from typing import Optional

from .utils import safe_url


class DbTapsError(Exception):
    """Base class for all errors raised by dbtaps."""


class CorruptedData(DbTapsError):
    """A chunk payload did not match its checksum."""


class UndecodableChunk(CorruptedData):
    """A chunk matched its checksum but its content could not be decoded."""


class IncompatibleVersion(DbTapsError):
    """The peer runs a different major.minor version."""

    def __init__(self, url: str, body: str = ''):
        self.url = safe_url(url)
        self.body = body
        super().__init__(f"{self.url} is running a different minor version of dbtaps. {body}".strip())


class Unauthorized(DbTapsError):
    """The peer rejected our credentials."""

    def __init__(self, url: str):
        self.url = safe_url(url)
        super().__init__(f"Bad credentials given for {self.url}")


class TransportError(DbTapsError):
    """A request to the peer could not complete (no structured reply)."""


class RemoteUnreachable(TransportError):
    """The peer could not be contacted at all."""

    def __init__(self, url: str):
        self.url = safe_url(url)
        super().__init__(f"Can't connect to {self.url}. Please check that it's running")


class ServerError(DbTapsError):
    """The peer reported an application-level failure."""

    def __init__(self, status: int, body: str, url: Optional[str] = None):
        self.status = status
        self.body = body
        self.url = safe_url(url) if url else None
        super().__init__(f"HTTP {status}: {body}")


class ChunkRetriesExhausted(DbTapsError):
    """A chunk kept failing verification past the configured bound."""

    def __init__(self, table_name: str, cursor: int, attempts: int):
        self.table_name = table_name
        self.cursor = cursor
        self.attempts = attempts
        super().__init__(
            f"Gave up on table {table_name} at row {cursor} after {attempts} attempts"
        )


class CursorMismatch(DbTapsError):
    """A pushed chunk does not start where the destination expects it."""

    def __init__(self, table_name: str, expected: int, got: int):
        self.table_name = table_name
        self.expected = expected
        self.got = got
        super().__init__(
            f"Table {table_name}: expected chunk at row {expected}, got {got}"
        )


class TransferAborted(DbTapsError):
    """The transfer gave up; the message says why."""


class TransferCancelled(DbTapsError):
    """The transfer stopped on request after the step in flight resolved.

    `state` is the TransferState of the interrupted table, from which the
    transfer can be resumed. It is None when the stop landed between
    phases rather than inside a table.
    """

    def __init__(self, state=None):
        self.state = state
        if state is None:
            super().__init__("Transfer stopped")
        else:
            super().__init__(f"Transfer of {state.table_name} stopped at row {state.cursor}")
