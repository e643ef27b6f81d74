"""
Narrow decoder for the pickled archive index.

The index is a pickle of ``{name: [(offset, length, prefix)]}``. Rather than
handing untrusted archive data to ``pickle.loads``, the opcode stream is walked
with ``pickletools.genops`` and only the opcodes that build dicts, lists,
tuples, integers and strings are executed. Anything that would look up a
global or call a constructor is rejected.
"""

import pickletools
from typing import Any, Dict, List, NamedTuple, Union

from renpak.errors import CorruptIndexError, StructuralMismatchError

U64_MAX = (1 << 64) - 1
U32_MAX = (1 << 32) - 1


class _Mark:
    def __repr__(self) -> str:
        return '<mark>'


MARK = _Mark()

_INTS = frozenset({'INT', 'BININT', 'BININT1', 'BININT2', 'LONG', 'LONG1', 'LONG4'})
_UNICODE = frozenset({'UNICODE', 'BINUNICODE', 'SHORT_BINUNICODE', 'BINUNICODE8'})
_LEGACY_STRINGS = frozenset({'STRING', 'BINSTRING', 'SHORT_BINSTRING'})
_BYTES = frozenset({'BINBYTES', 'SHORT_BINBYTES', 'BINBYTES8'})
_PUTS = frozenset({'PUT', 'BINPUT', 'LONG_BINPUT'})
_GETS = frozenset({'GET', 'BINGET', 'LONG_BINGET'})
_IGNORED = frozenset({'PROTO', 'FRAME'})
_TUPLE_N = {'TUPLE1': 1, 'TUPLE2': 2, 'TUPLE3': 3}


def legacy_str(value: str) -> str:
    # pickletools hands 8-bit strings over as latin-1; writers stored UTF-8
    raw = value.encode('latin-1')
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError:
        return value


def _pop_mark(stack: List[Any]) -> List[Any]:
    for pos in range(len(stack) - 1, -1, -1):
        if stack[pos] is MARK:
            items = stack[pos + 1:]
            del stack[pos:]
            return items
    raise CorruptIndexError('malformed index pickle: missing mark')


def _set_items(target: Any, items: List[Any]) -> None:
    if not isinstance(target, dict) or len(items) % 2:
        raise CorruptIndexError('malformed index pickle: bad SETITEMS')
    for key, value in zip(items[::2], items[1::2]):
        try:
            target[key] = value
        except TypeError as exc:
            raise StructuralMismatchError(f'unhashable member name {key!r}') from exc


def _step(name: str, arg: Any, stack: List[Any], memo: Dict[int, Any]) -> None:
    if name in _IGNORED:
        return
    if name in _INTS or name in _UNICODE or name in _BYTES:
        stack.append(arg)
    elif name in _LEGACY_STRINGS:
        stack.append(legacy_str(arg))
    elif name == 'NONE':
        stack.append(None)
    elif name == 'MARK':
        stack.append(MARK)
    elif name == 'EMPTY_DICT':
        stack.append({})
    elif name == 'EMPTY_LIST':
        stack.append([])
    elif name == 'EMPTY_TUPLE':
        stack.append(())
    elif name == 'DICT':
        items = _pop_mark(stack)
        stack.append({})
        _set_items(stack[-1], items)
    elif name == 'LIST':
        stack.append(_pop_mark(stack))
    elif name == 'TUPLE':
        stack.append(tuple(_pop_mark(stack)))
    elif name in _TUPLE_N:
        count = _TUPLE_N[name]
        if len(stack) < count:
            raise CorruptIndexError(f'malformed index pickle: stack underflow at {name}')
        items = tuple(stack[-count:])
        del stack[-count:]
        stack.append(items)
    elif name == 'APPEND':
        value = stack.pop()
        if not isinstance(stack[-1], list):
            raise CorruptIndexError('malformed index pickle: APPEND to non-list')
        stack[-1].append(value)
    elif name == 'APPENDS':
        items = _pop_mark(stack)
        if not isinstance(stack[-1], list):
            raise CorruptIndexError('malformed index pickle: APPENDS to non-list')
        stack[-1].extend(items)
    elif name == 'SETITEM':
        value = stack.pop()
        key = stack.pop()
        _set_items(stack[-1], [key, value])
    elif name == 'SETITEMS':
        items = _pop_mark(stack)
        _set_items(stack[-1], items)
    elif name in _PUTS:
        memo[arg] = stack[-1]
    elif name == 'MEMOIZE':
        memo[len(memo)] = stack[-1]
    elif name in _GETS:
        stack.append(memo[arg])
    else:
        raise StructuralMismatchError(f'unsupported pickle opcode {name}')


def loads(data: bytes) -> Any:
    """Rebuild the plain container graph encoded in `data`."""
    stack: List[Any] = []
    memo: Dict[int, Any] = {}
    try:
        for opcode, arg, _pos in pickletools.genops(data):
            if opcode.name == 'STOP':
                break
            _step(opcode.name, arg, stack, memo)
    except (ValueError, IndexError, KeyError) as exc:
        raise CorruptIndexError(f'malformed index pickle: {exc}') from exc

    if len(stack) != 1 or stack[0] is MARK:
        raise CorruptIndexError('malformed index pickle: expected a single object')
    return stack[0]


class RawEntry(NamedTuple):
    offset: int
    length: int


class SchemaError(NamedTuple):
    key: str
    reason: str


DecodedEntry = Union[RawEntry, SchemaError]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def decode_entry(key: str, value: Any) -> DecodedEntry:
    if not isinstance(value, (list, tuple)):
        return SchemaError(key, f'expected a sequence, got {type(value).__name__}')
    if len(value) != 1:
        return SchemaError(key, f'expected exactly one item, got {len(value)}')
    (triple,) = value
    if not isinstance(triple, (list, tuple)):
        return SchemaError(key, f'expected a triple, got {type(triple).__name__}')
    if len(triple) != 3:
        return SchemaError(key, f'expected 3 fields, got {len(triple)}')
    offset, length, prefix = triple
    if prefix not in ('', b''):
        return SchemaError(key, f'prefix data is not supported, got {prefix!r}')
    if not _is_int(offset) or not 0 <= offset <= U64_MAX:
        return SchemaError(key, f'offset is not an unsigned 64-bit integer: {offset!r}')
    if not _is_int(length) or not 0 <= length <= U32_MAX:
        return SchemaError(key, f'length is not an unsigned 32-bit integer: {length!r}')
    return RawEntry(offset, length)


def decode_index(data: bytes) -> Dict[str, RawEntry]:
    """
    Decode a decompressed index pickle into ``{name: RawEntry}``.

    Offsets and lengths are returned as stored, before any de-obfuscation.
    Raises StructuralMismatchError naming the first member that does not
    have the expected ``[(offset, length, '')]`` shape.
    """
    obj = loads(data)
    if not isinstance(obj, dict):
        raise StructuralMismatchError(f'expected a dict, got {type(obj).__name__}')

    table: Dict[str, RawEntry] = {}
    for key, value in obj.items():
        if not isinstance(key, str):
            raise StructuralMismatchError('member name is not a string', key=repr(key))
        decoded = decode_entry(key, value)
        if isinstance(decoded, SchemaError):
            raise StructuralMismatchError(decoded.reason, key=decoded.key)
        table[key] = decoded
    return table
