import io
import pickle
import zlib
from typing import Any, Dict, Mapping, Optional

KEY = 0xDEADBEEF

MEMBERS = {
    'script.rpyc': b'\x00compiled script\xff' * 3,
    'images/bg/room.png': b'\x89PNG\r\n\x1a\n' + bytes(range(256)),
    'audio/theme.ogg': b'OggS' + b'\x01' * 1000,
    'empty.txt': b'',
    'notes/readme.txt': 'café ☕\n'.encode('utf-8'),
}


def header_size(version: int) -> int:
    return len(make_header(version, 0, KEY))


def make_header(version: int, index_offset: int, key: Optional[int]) -> bytes:
    if version == 2:
        return b'RPA-2.0 %016x\n' % index_offset
    return b'RPA-3.0 %016x %08x\n' % (index_offset, key)


def build_archive(
    members: Mapping[str, bytes] = MEMBERS,
    version: int = 3,
    key: int = KEY,
    protocol: int = 2,
    index: Optional[Any] = None,
    raw_index: Optional[bytes] = None,
) -> bytes:
    """
    Lay out `members` back to back after the header and append the index.

    `index` replaces the pickled object and `raw_index` the compressed
    index bytes, to produce broken archives.
    """
    body = io.BytesIO()
    offset = header_size(version)
    table: Dict[str, Any] = {}
    for name, data in members.items():
        length = len(data)
        if version == 3:
            table[name] = [(offset ^ key, length ^ key, '')]
        else:
            table[name] = [(offset, length, '')]
        body.write(data)
        offset += length

    if raw_index is None:
        obj = table if index is None else index
        raw_index = zlib.compress(pickle.dumps(obj, protocol=protocol))
    return make_header(version, offset, key) + body.getvalue() + raw_index


def build_with_index_pickle(data: bytes, version: int = 2) -> bytes:
    return build_archive({}, version=version, raw_index=zlib.compress(data))
