"""
Chunk Codec

Design Decision: Payload Format
===============================

Options Considered:
1. pickle - Handles every Python type
   - Unpickling peer data executes arbitrary code
2. JSON + zlib - Portable, safe to load
   - Needs tags for dates, decimals and bytes
3. msgpack - Compact
   - Extra dependency, still needs extension types

Decision: zlib-compressed JSON
- Safe to decode data received from a peer
- Deterministic: the same rows always give the same bytes, so a chunk
  re-produced for an unmoved cursor keeps its checksum
- Non-JSON column values are wrapped as {"__t": tag, "v": text}. Mappings
  (JSON columns) become {"__t": "dict", "v": [[key, value], ...]}, so
  user data never takes the shape of a tag

Payload layout (before compression):
```
{"header": ["id", "name", ...], "data": [[1, "a"], [2, "b"], ...]}
```

Checksum: SHA-256 hex digest of the compressed payload. This is integrity
checking against transport corruption, not authentication.
"""

import base64
import datetime
import hashlib
import json
import uuid
import zlib
from decimal import Decimal
from typing import Any, Iterable, List, Sequence, Tuple

from ..errors import CorruptedData, UndecodableChunk
from .state import Row

COMPRESSION_LEVEL = 6


def _encode_value(value: Any) -> Any:
    """json.dumps hook for values JSON cannot represent natively."""
    if isinstance(value, datetime.datetime):
        return {'__t': 'datetime', 'v': value.isoformat()}
    if isinstance(value, datetime.date):
        return {'__t': 'date', 'v': value.isoformat()}
    if isinstance(value, datetime.time):
        return {'__t': 'time', 'v': value.isoformat()}
    if isinstance(value, datetime.timedelta):
        return {'__t': 'timedelta', 'v': value.total_seconds()}
    if isinstance(value, Decimal):
        return {'__t': 'decimal', 'v': str(value)}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {'__t': 'bytes', 'v': base64.b64encode(bytes(value)).decode('ascii')}
    if isinstance(value, uuid.UUID):
        return {'__t': 'uuid', 'v': str(value)}
    raise TypeError(f"Cannot encode value of type {type(value).__name__}")


def _escape(value: Any) -> Any:
    """
    Rewrite mappings held in column values (JSON columns) as tagged pair
    lists, so the only JSON objects in a payload are the document itself
    and value tags.
    """
    if isinstance(value, dict):
        return {'__t': 'dict', 'v': [[k, _escape(v)] for k, v in value.items()]}
    if isinstance(value, (list, tuple)):
        return [_escape(v) for v in value]
    return value


_DECODERS = {
    'datetime': datetime.datetime.fromisoformat,
    'date': datetime.date.fromisoformat,
    'time': datetime.time.fromisoformat,
    'timedelta': lambda v: datetime.timedelta(seconds=v),
    'decimal': Decimal,
    'bytes': base64.b64decode,
    'uuid': uuid.UUID,
    'dict': lambda pairs: {k: v for k, v in pairs},
}


def _decode_object(obj: dict) -> Any:
    if '__t' not in obj:
        # The document itself
        return obj
    tag = obj['__t']
    if tag not in _DECODERS or set(obj) != {'__t', 'v'}:
        raise ValueError(f"Unknown value tag: {obj!r}")
    return _DECODERS[tag](obj['v'])


class ChunkCodec:
    """
    Turns a batch of rows into a transport payload and back.

    - encode(rows, columns) -> (payload, row_count)
    - checksum(payload) -> hex digest
    - decode(payload, checksum) -> (columns, rows), verifying first
    """

    def __init__(self, level: int = COMPRESSION_LEVEL):
        self.level = level

    def encode(self, rows: Iterable[Sequence[Any]],
               columns: Sequence[str]) -> Tuple[bytes, int]:
        data = [[_escape(value) for value in row] for row in rows]
        document = {'header': list(columns), 'data': data}
        raw = json.dumps(
            document,
            default=_encode_value,
            separators=(',', ':'),
            ensure_ascii=False,
        ).encode('utf-8')
        return zlib.compress(raw, self.level), len(data)

    @staticmethod
    def checksum(payload: bytes) -> str:
        return hashlib.sha256(payload).hexdigest()

    def verify(self, payload: bytes, checksum: str) -> bool:
        """True if the payload matches the checksum sent alongside it."""
        return bool(checksum) and self.checksum(payload) == checksum

    def decode(self, payload: bytes, checksum: str) -> Tuple[List[str], List[Row]]:
        """
        Verify and decode a payload.

        Raises:
            CorruptedData: the payload does not match its checksum.
            UndecodableChunk: the checksum matches but the payload still
                cannot be decoded; resending the same bytes cannot help.
            Nothing is returned partially in either case.
        """
        if not self.verify(payload, checksum):
            raise CorruptedData(
                f"Checksum mismatch: expected {checksum}, got {self.checksum(payload)}"
            )

        try:
            raw = zlib.decompress(payload)
            document = json.loads(raw.decode('utf-8'), object_hook=_decode_object)
            columns = list(document['header'])
            rows = [tuple(row) for row in document['data']]
        except (zlib.error, UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            raise UndecodableChunk(f"Undecodable chunk payload: {e}") from e

        return columns, rows
