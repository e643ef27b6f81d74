"""
Ren'Py archives (``.rpa``).

Layout::

    RPA-3.0 <index offset, hex> <key, hex>\\n
    <member data, back to back>
    <zlib-compressed pickle of {name: [(offset, length, '')]}>   (until EOF)

RPA-2.0 archives have the same layout without the key. In RPA-3.0 archives
every stored offset and length is XORed with the key.
"""

import enum
import logging
import re
import zlib
from typing import IO, Dict, NamedTuple, Optional

from renpak.archive import SimpleArchive, make_opener, stream_size
from renpak.errors import (
    CorruptIndexError,
    MalformedHeaderError,
    UnsupportedFormatError,
)
from renpak.formats.common import ReachedEOFBeforeNewlineError, line_length
from renpak.unpickle import U32_MAX, U64_MAX, RawEntry, decode_index

logger = logging.getLogger(__name__)

MAGIC_SIZE = 7

_HEX_TOKEN = re.compile(r'[0-9a-fA-F]+')


class FormatVersion(enum.Enum):
    V2 = b'RPA-2.0'
    V3 = b'RPA-3.0'


class IndexEntry(NamedTuple):
    offset: int
    length: int


class RPAHeader(NamedTuple):
    version: FormatVersion
    index_offset: int
    key: Optional[int]


def parse_hex(token: str, limit: int, what: str) -> int:
    if not _HEX_TOKEN.fullmatch(token):
        raise MalformedHeaderError(f'{what} is not a hex number: {token!r}')
    value = int(token, 16)
    if value > limit:
        raise MalformedHeaderError(f'{what} out of range: {token}')
    return value


def read_magic(stream: IO[bytes]) -> FormatVersion:
    magic = stream.read(MAGIC_SIZE)
    try:
        return FormatVersion(magic)
    except ValueError as exc:
        raise UnsupportedFormatError(magic) from exc


def read_header(stream: IO[bytes]) -> RPAHeader:
    version = read_magic(stream)
    stream.read(1)  # separator

    try:
        size = line_length(stream)
    except ReachedEOFBeforeNewlineError as exc:
        raise MalformedHeaderError('header line is not newline-terminated') from exc

    try:
        line = stream.read(size).decode('ascii')
    except UnicodeDecodeError as exc:
        raise MalformedHeaderError('header line is not ASCII') from exc

    tokens = line.split(' ')
    index_offset = parse_hex(tokens[0], U64_MAX, 'index offset')

    key = None
    if version is FormatVersion.V3:
        if len(tokens) < 2:
            raise MalformedHeaderError('missing obfuscation key')
        key = parse_hex(tokens[1], U32_MAX, 'obfuscation key')

    return RPAHeader(version, index_offset, key)


def inflate(payload: bytes) -> bytes:
    inflater = zlib.decompressobj()
    try:
        data = inflater.decompress(payload)
    except zlib.error as exc:
        raise CorruptIndexError(f'cannot decompress index: {exc}') from exc
    if not inflater.eof:
        raise CorruptIndexError('compressed index is truncated')
    if inflater.unused_data:
        logger.debug(
            'ignoring %d bytes after the compressed index',
            len(inflater.unused_data),
        )
    return data


def deobfuscate(entry: RawEntry, key: int) -> IndexEntry:
    return IndexEntry(entry.offset ^ key, entry.length ^ key)


def read_index(
    stream: IO[bytes],
    index_offset: int,
    key: Optional[int] = None,
) -> Dict[str, IndexEntry]:
    if index_offset > stream_size(stream):
        raise CorruptIndexError(
            f'index offset 0x{index_offset:x} is past the end of the archive',
        )
    stream.seek(index_offset)
    # assumes nothing but the compressed index follows it
    raw = decode_index(inflate(stream.read()))
    if key is None:
        return {name: IndexEntry(*entry) for name, entry in raw.items()}
    return {name: deobfuscate(entry, key) for name, entry in raw.items()}


class RenPyArchive(SimpleArchive):
    version: FormatVersion
    key: Optional[int]

    def _create_index(self) -> Dict[str, IndexEntry]:  # type: ignore[override]
        header = read_header(self._stream)
        logger.debug(
            'archive version %s, index at 0x%x',
            header.version.name,
            header.index_offset,
        )
        self.version = header.version
        self.key = header.key
        index = read_index(self._stream, header.index_offset, header.key)
        logger.debug('index holds %d members', len(index))
        return index


open = make_opener(RenPyArchive)
