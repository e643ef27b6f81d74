from typing import Optional


class RPAError(Exception):
    """Base class for all errors raised while reading an RPA archive."""


class UnsupportedFormatError(RPAError):
    def __init__(self, magic: bytes) -> None:
        self.magic = magic
        super().__init__(f'unsupported archive format {magic!r}')


class MalformedHeaderError(RPAError):
    pass


class CorruptIndexError(RPAError):
    pass


class StructuralMismatchError(RPAError):
    def __init__(self, reason: str, key: Optional[str] = None) -> None:
        self.key = key
        self.reason = reason
        if key is None:
            super().__init__(f'unexpected index structure: {reason}')
        else:
            super().__init__(f'unexpected index structure for {key!r}: {reason}')


class MemberNotFoundError(RPAError, KeyError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'no member {name} found in archive')

    def __str__(self) -> str:
        return str(self.args[0])


class TruncatedReadError(RPAError, EOFError):
    def __init__(self, name: str, expected: int, actual: int) -> None:
        self.name = name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f'member {name} is truncated: expected {expected} bytes, got {actual}',
        )


class ClosedArchiveError(RPAError, ValueError):
    def __init__(self) -> None:
        super().__init__('I/O operation on closed archive')


class UnsafeMemberPathError(RPAError, ValueError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f'refusing to extract {name} outside of target directory')
