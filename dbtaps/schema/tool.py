"""
Schema and Index Blobs

The transfer core treats schema and indexes as opaque blobs. This module
produces and consumes them using SQLAlchemy reflection:

- Schema blob: tables, columns (generic type + size arguments, nullability)
  and primary keys. Loading drops and recreates each described table.
- Index blob: secondary indexes (name, columns, uniqueness). Loaded after
  the data so bulk inserts don't pay for index maintenance.

Foreign keys are not replicated: tables are filled one at a time in no
particular order.
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Dict, List

from sqlalchemy import Column, Index, MetaData, Table, inspect, text
from sqlalchemy import types as sqltypes
from sqlalchemy.types import TypeEngine

if TYPE_CHECKING:
    from ..storage.database import Database

logger = logging.getLogger(__name__)

BLOB_FORMAT = 1

# Type constructor arguments we carry across databases
TYPE_ARGS = ('length', 'precision', 'scale', 'timezone')


# === Types ===

def describe_type(column_type: TypeEngine) -> Dict[str, Any]:
    """Reduce a dialect-specific column type to a portable description."""
    try:
        generic = column_type.as_generic()
    except NotImplementedError:
        logger.warning(f"No generic equivalent for {column_type!r}, using Text")
        return {'type': 'Text'}

    if isinstance(generic, sqltypes.Enum):
        longest = max((len(v) for v in generic.enums), default=1)
        return {'type': 'String', 'length': longest}

    spec: Dict[str, Any] = {'type': type(generic).__name__}
    for arg in TYPE_ARGS:
        value = getattr(generic, arg, None)
        if value is not None:
            spec[arg] = value
    return spec


def build_type(spec: Dict[str, Any]) -> TypeEngine:
    """Inverse of describe_type()."""
    type_cls = getattr(sqltypes, spec.get('type', ''), None)
    if not (isinstance(type_cls, type) and issubclass(type_cls, TypeEngine)):
        logger.warning(f"Unknown column type {spec.get('type')!r}, using Text")
        return sqltypes.Text()

    kwargs = {arg: spec[arg] for arg in TYPE_ARGS if spec.get(arg) is not None}
    try:
        return type_cls(**kwargs)
    except TypeError:
        return type_cls()


# === Schema ===

def _describe_tables(conn) -> List[Dict[str, Any]]:
    inspector = inspect(conn)
    tables = []
    for name in sorted(inspector.get_table_names()):
        primary_key = inspector.get_pk_constraint(name).get('constrained_columns') or []
        columns = [
            {
                'name': col['name'],
                'type': describe_type(col['type']),
                'nullable': bool(col.get('nullable', True)),
            }
            for col in inspector.get_columns(name)
        ]
        tables.append({'name': name, 'columns': columns, 'primary_key': primary_key})
    return tables


def _create_tables(conn, tables: List[Dict[str, Any]]):
    metadata = MetaData()
    for spec in tables:
        primary_key = set(spec.get('primary_key', []))
        Table(
            spec['name'],
            metadata,
            *[
                Column(
                    col['name'],
                    build_type(col['type']),
                    primary_key=col['name'] in primary_key,
                    nullable=col.get('nullable', True) and col['name'] not in primary_key,
                )
                for col in spec['columns']
            ],
        )
    metadata.drop_all(conn, checkfirst=True)
    metadata.create_all(conn)


async def dump_schema(db: 'Database') -> bytes:
    tables = await db.run_sync(_describe_tables)
    logger.debug(f"Dumped schema of {len(tables)} tables")
    return json.dumps({'format': BLOB_FORMAT, 'tables': tables}).encode('utf-8')


async def load_schema(db: 'Database', blob: bytes) -> List[str]:
    """Recreate the tables described by a schema blob. Returns their names."""
    document = _parse_blob(blob)
    tables = document.get('tables', [])
    await db.run_sync(_create_tables, tables)
    db.forget_tables()
    names = [t['name'] for t in tables]
    logger.info(f"Loaded schema: {len(names)} tables")
    return names


# === Indexes ===

def _describe_indexes(conn) -> List[Dict[str, Any]]:
    inspector = inspect(conn)
    indexes = []
    for table_name in sorted(inspector.get_table_names()):
        for index in inspector.get_indexes(table_name):
            columns = index.get('column_names') or []
            # Expression indexes have no portable form
            if not index.get('name') or not columns or None in columns:
                continue
            indexes.append({
                'table': table_name,
                'name': index['name'],
                'columns': list(columns),
                'unique': bool(index.get('unique', False)),
            })
    return indexes


def _create_indexes(conn, indexes: List[Dict[str, Any]]) -> List[str]:
    inspector = inspect(conn)
    metadata = MetaData()
    created = []
    for spec in indexes:
        existing = {ix['name'] for ix in inspector.get_indexes(spec['table'])}
        if spec['name'] in existing:
            continue
        table = Table(spec['table'], metadata, autoload_with=conn)
        index = Index(
            spec['name'],
            *[table.c[name] for name in spec['columns']],
            unique=spec.get('unique', False),
        )
        index.create(conn)
        created.append(spec['name'])
    return created


async def dump_indexes(db: 'Database') -> bytes:
    indexes = await db.run_sync(_describe_indexes)
    logger.debug(f"Dumped {len(indexes)} indexes")
    return json.dumps({'format': BLOB_FORMAT, 'indexes': indexes}).encode('utf-8')


async def load_indexes(db: 'Database', blob: bytes) -> List[str]:
    """Create the indexes described by an index blob. Returns created names."""
    document = _parse_blob(blob)
    created = await db.run_sync(_create_indexes, document.get('indexes', []))
    db.forget_tables()
    logger.info(f"Loaded indexes: {len(created)} created")
    return created


# === Sequences ===

def _reset_pg_sequences(conn) -> List[str]:
    inspector = inspect(conn)
    quote = conn.dialect.identifier_preparer.quote
    reset = []
    for table_name in inspector.get_table_names():
        primary_key = inspector.get_pk_constraint(table_name).get('constrained_columns') or []
        if len(primary_key) != 1:
            continue
        column = primary_key[0]
        sequence = conn.execute(
            text("SELECT pg_get_serial_sequence(:table, :column)"),
            {'table': quote(table_name), 'column': column},
        ).scalar()
        if not sequence:
            continue
        conn.execute(
            text(
                f"SELECT setval(:sequence, COALESCE(MAX({quote(column)}), 1), "
                f"MAX({quote(column)}) IS NOT NULL) FROM {quote(table_name)}"
            ),
            {'sequence': sequence},
        )
        reset.append(sequence)
    return reset


async def reset_sequences(db: 'Database') -> List[str]:
    """
    Bring sequence counters in line with the data just inserted.

    Only PostgreSQL keeps counters apart from the data; SQLite and MySQL
    derive the next value from the table contents.
    """
    if db.dialect_name != 'postgresql':
        logger.debug(f"No sequences to reset on {db.dialect_name}")
        return []
    reset = await db.run_sync(_reset_pg_sequences)
    logger.info(f"Reset {len(reset)} sequences")
    return reset


def _parse_blob(blob: bytes) -> Dict[str, Any]:
    document = json.loads(blob.decode('utf-8') if isinstance(blob, bytes) else blob)
    if document.get('format') != BLOB_FORMAT:
        raise ValueError(f"Unsupported blob format: {document.get('format')!r}")
    return document
