"""Pytest configuration and fixtures"""

import datetime
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import (
    Column, DateTime, Index, Integer, MetaData, String, Table, create_engine, select,
)

from dbtaps.config import Config
from dbtaps.storage import Database


def sqlite_url(path: Path) -> str:
    return f"sqlite:///{path}"


def create_users(url: str, count: int, with_index: bool = True):
    """Create and fill a `users` table with `count` deterministic rows."""
    engine = create_engine(url)
    metadata = MetaData()
    users = Table(
        'users', metadata,
        Column('id', Integer, primary_key=True),
        Column('name', String(50), nullable=False),
        Column('email', String(100)),
        Column('signup', DateTime),
    )
    if with_index:
        Index('ix_users_email', users.c.email, unique=True)
    metadata.create_all(engine)

    start = datetime.datetime(2020, 1, 1, 12, 0, 0)
    rows = [
        {
            'id': i,
            'name': f"user {i}",
            'email': f"user{i}@example.com",
            'signup': start + datetime.timedelta(minutes=i) if i % 7 else None,
        }
        for i in range(1, count + 1)
    ]
    with engine.begin() as conn:
        if rows:
            conn.execute(users.insert(), rows)
    engine.dispose()


def create_events(url: str, count: int):
    """Create a table without a primary key."""
    engine = create_engine(url)
    metadata = MetaData()
    events = Table(
        'events', metadata,
        Column('kind', String(20)),
        Column('amount', Integer),
    )
    metadata.create_all(engine)
    rows = [{'kind': f"kind{i % 3}", 'amount': i} for i in range(count)]
    with engine.begin() as conn:
        if rows:
            conn.execute(events.insert(), rows)
    engine.dispose()


def read_rows(url: str, table_name: str) -> list:
    """All rows of a table, sorted, via a plain sync engine."""
    engine = create_engine(url)
    metadata = MetaData()
    table = Table(table_name, metadata, autoload_with=engine)
    with engine.connect() as conn:
        rows = [tuple(r) for r in conn.execute(select(table))]
    engine.dispose()
    return sorted(rows, key=repr)


@pytest.fixture
def source_url(tmp_path):
    return sqlite_url(tmp_path / 'source.db')


@pytest.fixture
def destination_url(tmp_path):
    url = sqlite_url(tmp_path / 'destination.db')
    # Make sure the file exists even before anything is pushed
    create_engine(url).connect().close()
    return url


@pytest_asyncio.fixture
async def source_db(source_url):
    async with Database(source_url) as db:
        yield db


@pytest_asyncio.fixture
async def destination_db(destination_url):
    async with Database(destination_url) as db:
        yield db


@pytest.fixture
def steady_config():
    """Config whose sizer never changes the chunk size."""
    return Config(chunk_size=1000, target_time_low=1e-9, target_time_high=1e9)
