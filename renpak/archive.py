import io
import logging
import os
import pathlib
import threading
from contextlib import AbstractContextManager, contextmanager
from types import MappingProxyType
from typing import (
    IO,
    TYPE_CHECKING,
    Any,
    AnyStr,
    Callable,
    ContextManager,
    Generic,
    Iterator,
    List,
    Mapping,
    NamedTuple,
    Optional,
    Protocol,
    Tuple,
    Type,
    TypeVar,
    Union,
)

if TYPE_CHECKING:
    from types import TracebackType

from renpak.errors import (
    ClosedArchiveError,
    MemberNotFoundError,
    TruncatedReadError,
    UnsafeMemberPathError,
)

logger = logging.getLogger(__name__)

GLOB_ALL = '*'


EntryType = TypeVar('EntryType')
ArchiveIndex = Mapping[str, EntryType]
ArchiveT = TypeVar('ArchiveT', bound='BaseArchive[Any]')


class _SimpleEntry(NamedTuple):
    offset: int
    size: int


class Opener(Protocol):
    def open(
        self,
        file: Union[str, bytes, os.PathLike[AnyStr]],
        mode: str,
        **kwars: Any,
    ) -> IO[AnyStr]:
        """Custom namespace that provides `open` function."""


SimpleEntry = Union[_SimpleEntry, Tuple[int, int]]


def stream_size(stream: IO[bytes]) -> int:
    return stream.seek(0, io.SEEK_END)


def read_span(stream: IO[bytes], offset: int, size: int) -> bytes:
    # offsets past the end may not even fit the seek API
    if offset >= stream_size(stream):
        return b''
    stream.seek(offset, io.SEEK_SET)
    return stream.read(size)


class ArchivePath:
    def __init__(
        self,
        fname: Union[str, os.PathLike[str]],
        archive: 'BaseArchive[Any]',
    ) -> None:
        self._member = os.fspath(fname)
        self.fname = pathlib.PurePosixPath(self._member)
        self.archive = archive

    @property
    def parent(self) -> 'ArchivePath':
        """The logical parent of the path."""
        return ArchivePath(str(self.fname.parent), self.archive)

    @property
    def name(self) -> str:
        """The final path component, if any."""
        return self.fname.name

    @property
    def suffix(self) -> str:
        """
        The final component's last suffix, if any.

        This includes the leading period. For example: '.png'
        """
        return self.fname.suffix

    @property
    def stem(self) -> str:
        """The final path component, minus its last suffix."""
        return self.fname.stem

    def with_name(self, name: str) -> 'ArchivePath':
        """Return a new path with the file name changed."""
        return ArchivePath(str(self.fname.with_name(name)), self.archive)

    def with_suffix(self, suffix: str) -> 'ArchivePath':
        """Return a new path with the file suffix changed."""
        return ArchivePath(str(self.fname.with_suffix(suffix)), self.archive)

    def __str__(self) -> str:
        """Return the member name this path points to."""
        return self._member

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self._member!r})'

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ArchivePath):
            return NotImplemented
        return self._member == other._member and self.archive is other.archive

    def __hash__(self) -> int:
        return hash(self._member)

    def match(self, pattern: str) -> bool:
        """
        Return True if this path matches the given pattern.
        """
        return self.fname.match(pattern)

    def exists(self) -> bool:
        """Returns True if this path is a member of the archive."""
        return self._member in self.archive

    def open(
        self,
        mode: str = 'r',
        encoding: str = 'utf-8',
        errors: Optional[str] = None,
    ) -> ContextManager[IO[Any]]:
        """
        Open the member pointed by this path and return a file object, as
        the built-in open() function does.
        """
        return self.archive.open(
            self._member,
            mode=mode,
            encoding=encoding,
            errors=errors,
        )

    def read_bytes(self) -> bytes:
        return self.archive.get(self._member)

    def read_text(
        self,
        encoding: str = 'utf-8',
        errors: Optional[str] = None,
    ) -> str:
        return self.read_bytes().decode(encoding, errors or 'strict')

    def __truediv__(self, key: Union[str, os.PathLike[str]]) -> 'ArchivePath':
        return ArchivePath(str(self.fname / key), self.archive)


class BaseArchive(AbstractContextManager['BaseArchive[EntryType]'], Generic[EntryType]):
    """
    An archive backed by a single seekable stream.

    Subclasses build the member index once in `_create_index` and read the
    contents of a single member in `_read_entry`. The index is fully built
    when the constructor returns; a stream that cannot be indexed fails right
    away and no archive object is handed out.

    Reads reposition the shared stream, so they are serialized with a lock.
    """

    _stream: IO[bytes]

    index: Mapping[str, EntryType]

    _filename: Optional[pathlib.Path] = None
    _io: Opener = io  # type: ignore[assignment]

    def _create_index(self) -> ArchiveIndex[EntryType]:
        raise NotImplementedError('create_index')

    def _read_entry(self, name: str, entry: EntryType) -> bytes:
        raise NotImplementedError('read_entry')

    def __init__(
        self,
        file: Union[AnyStr, os.PathLike[AnyStr], IO[bytes]],
        opener: Opener = io,  # type: ignore[assignment]
    ) -> None:
        if isinstance(file, os.PathLike):
            file = os.fspath(file)

        self._io = opener
        self._lock = threading.Lock()
        self._closed = False

        owned = isinstance(file, (str, bytes))
        if owned:
            self._stream = self._io.open(file, 'rb')
            self._filename = pathlib.Path(os.fsdecode(file))
        else:
            self._stream = file  # type: ignore[assignment]
            self._filename = None

        try:
            self.index = MappingProxyType(dict(self._create_index()))
        except BaseException:
            # a stream passed in by the caller stays open for them to inspect
            if owned:
                self._stream.close()
            raise

    @classmethod
    def from_bytes(cls: Type[ArchiveT], data: bytes) -> ArchiveT:
        return cls(io.BytesIO(data))

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def filename(self) -> Optional[pathlib.Path]:
        return self._filename

    def _check_open(self) -> None:
        if self._closed:
            raise ClosedArchiveError()

    def get(self, name: str) -> bytes:
        """Read the full contents of member `name` into a new bytes object."""
        with self._lock:
            self._check_open()
            try:
                entry = self.index[name]
            except KeyError as exc:
                raise MemberNotFoundError(name) from exc
            logger.debug('reading member %s', name)
            return self._read_entry(name, entry)

    def names(self) -> List[str]:
        self._check_open()
        return list(self.index)

    @contextmanager
    def open(
        self,
        fname: Union[str, os.PathLike[str]],
        mode: str = 'r',
        encoding: str = 'utf-8',
        errors: Optional[str] = None,
    ) -> Iterator[IO[Any]]:
        ostream: IO[Any] = io.BytesIO(self.get(os.fspath(fname)))
        if 'b' not in mode:
            ostream = io.TextIOWrapper(
                ostream,  # type: ignore[arg-type]
                encoding=encoding,
                errors=errors,
            )
        with ostream:
            yield ostream

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._stream.close()

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional['TracebackType'],
    ) -> Optional[bool]:
        self.close()
        return None

    def __iter__(self) -> Iterator[ArchivePath]:
        for fname in self.names():
            yield ArchivePath(fname, self)

    def __len__(self) -> int:
        self._check_open()
        return len(self.index)

    def __contains__(self, name: object) -> bool:
        self._check_open()
        return name in self.index

    def glob(self, pattern: str) -> Iterator[ArchivePath]:
        return (entry for entry in self if entry.match(pattern))

    def extractall(
        self,
        dirname: Union[str, os.PathLike[str]],
        pattern: str = GLOB_ALL,
    ) -> List[pathlib.Path]:
        dirname = pathlib.Path(dirname)
        return [extract_member(entry, dirname) for entry in self.glob(pattern)]


def safe_target(dirname: pathlib.Path, member: str) -> pathlib.Path:
    parts = pathlib.PurePosixPath(member).parts
    if not parts or parts[0] == '/' or '..' in parts:
        raise UnsafeMemberPathError(member)
    return dirname.joinpath(*parts)


def extract_member(entry: ArchivePath, dirname: pathlib.Path) -> pathlib.Path:
    target = safe_target(dirname, str(entry))
    os.makedirs(target.parent, exist_ok=True)
    with io.open(target, 'wb') as out_file:
        out_file.write(entry.read_bytes())
    return target


class SimpleArchive(BaseArchive[SimpleEntry]):
    def _read_entry(self, name: str, entry: SimpleEntry) -> bytes:
        entry = _SimpleEntry(*entry)
        data = read_span(self._stream, entry.offset, entry.size)
        if len(data) != entry.size:
            raise TruncatedReadError(name, entry.size, len(data))
        return data


def make_opener(
    archive_type: Type[ArchiveT],
) -> Callable[..., ContextManager[ArchiveT]]:
    @contextmanager
    def opener(*args: Any, **kwargs: Any) -> Iterator[ArchiveT]:
        with archive_type(*args, **kwargs) as inst:
            yield inst

    return opener
