"""
Relational Database Access

Design Decision: Database Layer
===============================

Options Considered:
1. Raw DB-API drivers - Fast, but one SQL dialect per backend
2. SQLAlchemy Core (sync) - Portable, but blocks the event loop
3. SQLAlchemy Core with the asyncio extension - Portable and awaitable

Decision: SQLAlchemy asyncio extension
- One code path for SQLite, PostgreSQL and MySQL
- Reflection gives us table structure without knowing the schema upfront
- aiosqlite as the bundled driver; others are optional extras

Rows are always read in a deterministic order (primary key, or every
column when there is none) so that OFFSET/LIMIT windows never overlap or
leave gaps between chunks.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy import MetaData, Table, func, inspect, select
from sqlalchemy.engine import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from ..transfer.state import Row, TableInventory
from ..utils import safe_url

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Plain dialect -> asyncio-capable driver
ASYNC_DRIVERS = {
    'sqlite': 'sqlite+aiosqlite',
    'postgres': 'postgresql+asyncpg',
    'postgresql': 'postgresql+asyncpg',
    'mysql': 'mysql+aiomysql',
}


def to_async_url(url: str) -> URL:
    """Upgrade a plain database URL to its asyncio driver."""
    parsed = make_url(url)
    if '+' not in parsed.drivername and parsed.drivername in ASYNC_DRIVERS:
        parsed = parsed.set(drivername=ASYNC_DRIVERS[parsed.drivername])
    return parsed


class Database:
    """
    Scoped connection to one relational database.

    Usage:
        async with Database('sqlite:///app.db') as db:
            columns, rows = await db.fetch_rows('users', 0, 1000)
    """

    def __init__(self, url: str):
        self.url = url
        self._engine: Optional[AsyncEngine] = None
        self._metadata = MetaData()
        self._tables: Dict[str, Table] = {}

    async def __aenter__(self) -> 'Database':
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def connect(self) -> AsyncEngine:
        """Create the engine (connections are opened lazily)."""
        if self._engine is not None:
            return self._engine

        url = to_async_url(self.url)
        kwargs: Dict[str, Any] = {}
        if url.get_backend_name() == 'sqlite' and url.database in (None, '', ':memory:'):
            # Every connection to :memory: is a new database otherwise
            kwargs['poolclass'] = StaticPool
        self._engine = create_async_engine(url, **kwargs)

        logger.info(f"Database connected: {safe_url(self.url)}")
        return self._engine

    async def close(self):
        """Dispose of the engine and every pooled connection."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self.forget_tables()

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("Database is not connected")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def run_sync(self, fn: Callable[..., T], *args) -> T:
        """Run `fn(sync_connection, *args)` inside one committed transaction."""
        async with self.engine.begin() as conn:
            return await conn.run_sync(fn, *args)

    # === Reflection ===

    async def table_names(self) -> List[str]:
        names = await self.run_sync(lambda conn: inspect(conn).get_table_names())
        return sorted(names)

    async def get_table(self, name: str) -> Table:
        """Reflect a table (cached until forget_tables())."""
        table = self._tables.get(name)
        if table is None:
            table = await self.run_sync(
                lambda conn: Table(name, self._metadata, autoload_with=conn)
            )
            self._tables[name] = table
        return table

    def forget_tables(self):
        """Drop cached reflections, e.g. after the schema was replaced."""
        self._metadata = MetaData()
        self._tables = {}

    @staticmethod
    def order_columns(table: Table) -> list:
        """The deterministic ordering key used to cut a table into chunks."""
        primary_key = list(table.primary_key.columns)
        return primary_key or list(table.columns)

    # === Rows ===

    async def count_rows(self, name: str) -> int:
        table = await self.get_table(name)
        async with self.engine.connect() as conn:
            result = await conn.execute(select(func.count()).select_from(table))
            return int(result.scalar_one())

    async def table_inventory(self) -> TableInventory:
        """Row count of every table, for progress totals."""
        inventory = TableInventory()
        for name in await self.table_names():
            inventory.counts[name] = await self.count_rows(name)
        return inventory

    async def fetch_rows(self, name: str, offset: int,
                         limit: int) -> Tuple[List[str], List[Row]]:
        """Read `limit` rows starting at `offset` in ordering-key order."""
        table = await self.get_table(name)
        stmt = (
            select(table)
            .order_by(*self.order_columns(table))
            .offset(offset)
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(stmt)
            columns = list(result.keys())
            rows = [tuple(row) for row in result]
        return columns, rows

    async def insert_rows(self, name: str, columns: Sequence[str],
                          rows: Sequence[Row]) -> int:
        """Insert every row in a single transaction. Returns the row count."""
        if not rows:
            return 0
        table = await self.get_table(name)
        records = [dict(zip(columns, row)) for row in rows]
        async with self.engine.begin() as conn:
            await conn.execute(table.insert(), records)
        logger.debug(f"Inserted {len(records)} rows into {name}")
        return len(records)


async def init_database(url: str) -> Database:
    """Create and connect a database instance."""
    db = Database(url)
    await db.connect()
    return db
