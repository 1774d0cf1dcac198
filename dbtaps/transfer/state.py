"""
Transfer State and Chunk Types

TransferState is the whole resumable state of one table's transfer. It
travels with every chunk request so the peer can check it is handling the
chunk it expects, and a transfer can be resumed from it alone.

Chunk results are explicit variants instead of exceptions:
- Ok: the chunk was accepted (or applied) and the cursor may move
- Retry: the chunk was rejected or corrupted; resend it unchanged
- Fatal: give up on the whole transfer
"""

import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple, Union

Row = Tuple[Any, ...]


@dataclass(frozen=True)
class TableDescriptor:
    """A table and its row count when the transfer started (progress only)."""
    name: str
    row_count: int = 0


@dataclass
class TransferState:
    """
    Per-table transfer state.

    Attributes:
        table_name: Exact table identifier (case and quoting preserved)
        cursor: Number of rows durably transferred so far
        chunk_size: Rows requested per chunk, always >= 1
        checksum: Checksum of the chunk currently in flight
        error: True while the current chunk must be retried unchanged
    """
    table_name: str
    cursor: int = 0
    chunk_size: int = 1000
    checksum: Optional[str] = None
    error: bool = False

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {self.chunk_size}")
        if self.cursor < 0:
            raise ValueError(f"cursor must not be negative, got {self.cursor}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferState':
        return cls(
            table_name=data['table_name'],
            cursor=int(data.get('cursor', 0)),
            chunk_size=int(data.get('chunk_size', 1000)),
            checksum=data.get('checksum'),
            error=bool(data.get('error', False)),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, text: str) -> 'TransferState':
        return cls.from_dict(json.loads(text))

    def copy(self) -> 'TransferState':
        return TransferState(**self.to_dict())


@dataclass(frozen=True)
class Chunk:
    """
    One produced batch of rows.

    A chunk produced for a cursor position is resent verbatim (same payload,
    same checksum) until the consuming side accepts it.
    """
    cursor: int
    columns: List[str]
    rows: Tuple[Row, ...]
    payload: bytes
    checksum: str
    elapsed: float = 0.0

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class PulledChunk:
    """What the peer answered to a pull request, before verification."""
    payload: bytes
    checksum: str


# === Result variants ===

@dataclass(frozen=True)
class Ok:
    row_count: int = 0


@dataclass(frozen=True)
class Retry:
    reason: str = ''


@dataclass(frozen=True)
class Fatal:
    reason: str = ''


ChunkResult = Union[Ok, Retry, Fatal]


@dataclass
class TableInventory:
    """Table name -> row count; only used for progress totals."""
    counts: Dict[str, int] = field(default_factory=dict)

    @property
    def total_rows(self) -> int:
        return sum(self.counts.values())

    def descriptors(self) -> List[TableDescriptor]:
        return [TableDescriptor(name, count) for name, count in self.counts.items()]

    def __len__(self) -> int:
        return len(self.counts)
