"""
Transfer Progress

Progress is reported through a plain callback so the CLI can draw rich
progress bars while the orchestrator stays display-agnostic. Row counts come
from the inventory snapshot taken before streaming; they only drive the
display, never correctness.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional


@dataclass
class TableProgress:
    """Progress of a single table."""
    table_name: str
    total_rows: int
    transferred_rows: int = 0
    chunks: int = 0
    retries: int = 0
    chunk_size: int = 0
    complete: bool = False

    @property
    def progress(self) -> float:
        """Progress as 0.0 to 1.0."""
        if self.total_rows == 0:
            return 1.0 if self.complete else 0.0
        return min(1.0, self.transferred_rows / self.total_rows)

    def to_dict(self) -> dict:
        return {
            'table_name': self.table_name,
            'total_rows': self.total_rows,
            'transferred_rows': self.transferred_rows,
            'chunks': self.chunks,
            'retries': self.retries,
            'chunk_size': self.chunk_size,
            'complete': self.complete,
        }


@dataclass
class TransferProgress:
    """Progress of a whole run."""
    direction: str  # 'send' or 'receive'
    phase: str = 'initializing'  # 'verifying', 'schema', 'data', 'indexes', 'sequences', 'complete'
    total_tables: int = 0
    total_rows: int = 0
    tables: Dict[str, TableProgress] = field(default_factory=dict)
    current_table: Optional[str] = None
    start_time: float = field(default_factory=time.time)

    @property
    def transferred_rows(self) -> int:
        return sum(t.transferred_rows for t in self.tables.values())

    @property
    def retries(self) -> int:
        return sum(t.retries for t in self.tables.values())

    @property
    def elapsed_seconds(self) -> float:
        return time.time() - self.start_time

    @property
    def rows_per_sec(self) -> float:
        elapsed = self.elapsed_seconds
        if elapsed == 0:
            return 0
        return self.transferred_rows / elapsed

    @property
    def table(self) -> Optional[TableProgress]:
        if self.current_table is None:
            return None
        return self.tables.get(self.current_table)

    def to_dict(self) -> dict:
        return {
            'direction': self.direction,
            'phase': self.phase,
            'total_tables': self.total_tables,
            'total_rows': self.total_rows,
            'transferred_rows': self.transferred_rows,
            'retries': self.retries,
            'elapsed_seconds': self.elapsed_seconds,
            'current_table': self.current_table,
            'tables': [t.to_dict() for t in self.tables.values()],
        }


# Progress callback type
ProgressCallback = Callable[[TransferProgress], None]
