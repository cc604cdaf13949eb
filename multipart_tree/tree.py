"""
Rebuilds a directory tree from a flat sequence of multipart parts.

Every part names its place in the tree through the ``filename`` parameter of
its Content-Disposition header (URL-escaped, ``/`` separated).  A part whose
Content-Type is a directory type opens a directory; the parts that follow and
name it as their parent are its children.  The tree is produced lazily and can
be traversed only once, in order: when an iterator hands out a directory, that
directory must be read to the end before the iterator is advanced again.
"""

from __future__ import annotations

import logging
import posixpath
import re
from enum import IntEnum
from typing import TYPE_CHECKING
from urllib.parse import unquote_plus

from .exceptions import FileError, NotDirectoryError, ProtocolError, TreeError
from .nodes import File, Node, Symlink
from .parts import DEFAULT_CHUNK_SIZE, PartReader, parse_media_type

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Iterator, Mapping
    from typing import Any, Protocol, TypedDict

    from .parts import Part, SupportsRead

    class PartSource(Protocol):
        def next_part(self) -> Part | None: ...

    class TreeConfig(TypedDict):
        MAX_BODY_SIZE: float
        CHUNK_SIZE: int
        STRICT_SCOPE: bool
        ERROR_ON_BAD_CTE: bool

    OnEntryCallback = Callable[[str, Node], None]


MULTIPART_FORM_DATA = "multipart/form-data"
APPLICATION_DIRECTORY = "application/x-directory"
APPLICATION_SYMLINK = "application/symlink"
APPLICATION_FILE = "application/octet-stream"

DIRECTORY_MEDIA_TYPES = frozenset((MULTIPART_FORM_DATA, APPLICATION_DIRECTORY))

DEFAULT_CONFIG: TreeConfig = {
    "MAX_BODY_SIZE": float("inf"),
    "CHUNK_SIZE": DEFAULT_CHUNK_SIZE,
    "STRICT_SCOPE": False,
    "ERROR_ON_BAD_CTE": False,
}

# A "%" that doesn't start a two digit hex escape.
BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class PartScope(IntEnum):
    """Where a part sits relative to the directory being read."""

    DIRECT_CHILD = 0
    IN_CHILD_TREE = 1
    OUTSIDE_PARENT = 2


class IteratorState(IntEnum):
    ACTIVE = 0
    EXHAUSTED = 1
    ERRORED = 2


def is_directory(media_type: str) -> bool:
    return media_type in DIRECTORY_MEDIA_TYPES


def unescape_filename(name: str) -> str:
    """
    URL-unescapes a part file name (``+`` is a space).  If the name contains a
    malformed escape it is returned unchanged.  Escaped bytes that aren't valid
    UTF-8 are kept as surrogates.
    """
    if BAD_ESCAPE_RE.search(name):
        return name
    return unquote_plus(name, errors="surrogateescape")


def clean_path(path: str) -> str:
    """Normalizes a directory path.  The root is the empty string."""
    if not path:
        return ""
    path = posixpath.normpath(path)
    if path == ".":
        return ""
    return path


def split_path(name: str) -> tuple[str, str]:
    """Splits a file name into its (normalized) parent directory and base name."""
    head, tail = posixpath.split(name)
    return clean_path(head), tail


def _segments(path: str) -> list[str]:
    return path.split("/") if path else []


def part_scope(current_dir: str, part_dir: str) -> PartScope:
    """
    Classifies the parent directory a part declares against the directory
    currently being read.  Paths are compared segment by segment, so ``abc/f``
    is not inside ``ab``.
    """
    current = _segments(clean_path(current_dir))
    declared = _segments(clean_path(part_dir))

    if declared == current:
        return PartScope.DIRECT_CHILD
    if len(declared) > len(current) and declared[: len(current)] == current:
        return PartScope.IN_CHILD_TREE
    return PartScope.OUTSIDE_PARENT


def node_from_part(part: Part, source: LookaheadBuffer, strict: bool = False) -> Node:
    """
    Builds the node for a part that is a direct child of the directory being
    read, according to its Content-Type:

    * ``application/symlink``: the body is read now and becomes the target.
    * empty or ``application/octet-stream``: a :class:`File` streaming the body.
    * a directory media type: a nested :class:`Directory` sharing ``source``.
    * any other valid media type: a :class:`File`.

    An unparsable Content-Type raises :class:`MediaTypeError`.
    """
    content_type = part.content_type

    if content_type == APPLICATION_SYMLINK:
        try:
            target = part.read()
        except OSError as exc:
            raise FileError("Error reading symlink target of %r" % part.file_name) from exc
        return Symlink(target.decode("utf-8", "surrogateescape"))

    if content_type == "" or content_type == APPLICATION_FILE:
        return File(part, part.get_header("abspath"))

    media_type, _ = parse_media_type(content_type)
    if not is_directory(media_type):
        return File(part, part.get_header("abspath"))

    return Directory(source, part, media_type, strict=strict)


class LookaheadBuffer:
    """
    Wraps a part source with room for exactly one pushed-back part.  One buffer
    is shared by a root directory and every directory below it.
    """

    def __init__(self, source: PartSource) -> None:
        self.logger = logging.getLogger(__name__)
        self._source: PartSource | None = source
        self._pending: Part | None = None

    @property
    def exhausted(self) -> bool:
        return self._source is None and self._pending is None

    def pull(self) -> Part | None:
        if self._pending is not None:
            part = self._pending
            self._pending = None
            return part

        if self._source is None:
            return None

        part = self._source.next_part()
        if part is None:
            self._source = None
        return part

    def push_back(self, part: Part) -> None:
        if self._pending is not None:
            raise ProtocolError("Cannot push back multiple parts")
        self.logger.debug("Pushing back %r", part)
        self._pending = part

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(pending={self._pending!r})"


class DirIterator:
    """
    Iterates over the entries of one :class:`Directory`.

    Use it either as a Python iterator yielding ``(name, node)`` pairs, or by
    calling :meth:`advance` and reading :attr:`name` and :attr:`node`.  Once
    the iterator is exhausted it stays exhausted; once it failed, it raises the
    same error every time it is advanced.
    """

    def __init__(self, directory: Directory) -> None:
        self.logger = logging.getLogger(__name__)
        self.directory = directory
        self.state = IteratorState.ACTIVE
        self._name: str | None = None
        self._node: Node | None = None
        self._error: Exception | None = None

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def name(self) -> str:
        self._check_entry()
        assert self._name is not None
        return self._name

    @property
    def node(self) -> Node:
        self._check_entry()
        assert self._node is not None
        return self._node

    def _check_entry(self) -> None:
        if self.state != IteratorState.ACTIVE or self._node is None:
            raise ProtocolError("No current entry (iterator is %s)" % self.state.name.lower())

    def _fail(self, exc: Exception) -> bool:
        self.logger.debug("Iterator for %r failed: %r", self.directory.path, exc)
        self.state = IteratorState.ERRORED
        self._error = exc
        self._name = self._node = None
        return False

    def _exhaust(self) -> bool:
        self.state = IteratorState.EXHAUSTED
        self._name = self._node = None
        return False

    def advance(self) -> bool:
        """Moves to the next entry.  Returns False when there is none, either
        because the directory ended or because of an error (see :attr:`error`).
        """
        if self.state != IteratorState.ACTIVE:
            return False

        self._name = self._node = None
        directory = self.directory
        source = directory.source
        current_dir = directory.path

        while True:
            try:
                part = source.pull()
            except Exception as exc:
                return self._fail(exc)

            if part is None:
                return self._exhaust()

            part_dir, name = split_path(unescape_filename(part.file_name))
            scope = part_scope(current_dir, part_dir)

            if scope == PartScope.OUTSIDE_PARENT:
                try:
                    source.push_back(part)
                except ProtocolError as exc:
                    return self._fail(exc)
                return self._exhaust()

            if scope == PartScope.IN_CHILD_TREE:
                if directory.strict:
                    return self._fail(
                        ProtocolError(
                            "Part %r belongs to a directory below %r that was not read to the end"
                            % (part.file_name, current_dir)
                        )
                    )
                self.logger.debug("Discarding part %r below %r", part.file_name, current_dir)
                continue

            try:
                node = node_from_part(part, source, strict=directory.strict)
            except Exception as exc:
                return self._fail(exc)

            self._name = name
            self._node = node
            return True

    def __iter__(self) -> DirIterator:
        return self

    def __next__(self) -> tuple[str, Node]:
        if self.advance():
            return self.name, self.node
        if self._error is not None:
            raise self._error
        raise StopIteration

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={self.directory.path!r}, state={self.state.name})"


class Directory(Node):
    """
    A directory whose entries are decoded from a shared part stream.

    :param source: the :class:`LookaheadBuffer` shared by the whole tree.

    :param part: the part that opened this directory, or None for the root.

    :param media_type: the directory media type that introduced it.  Only used
                       for diagnostics.

    :param strict: if True, a part left over from a nested directory that was
                   not read to the end is an error instead of being skipped.
    """

    def __init__(
        self,
        source: LookaheadBuffer,
        part: Part | None = None,
        media_type: str = MULTIPART_FORM_DATA,
        strict: bool = False,
    ) -> None:
        self.source = source
        self.part = part
        self.media_type = media_type
        self.strict = strict
        self._entries: DirIterator | None = None
        self._path: str | None = None

    @classmethod
    def from_reader(cls, reader: PartSource, media_type: str, strict: bool = False) -> Directory:
        """Creates a root directory reading from ``reader``."""
        if not is_directory(media_type):
            raise NotDirectoryError("Not a directory media type: %r" % media_type)
        return cls(LookaheadBuffer(reader), None, media_type, strict=strict)

    @property
    def path(self) -> str:
        """The path of this directory inside the tree; the root is ``""``."""
        if self._path is None:
            if self.part is None:
                self._path = ""
            else:
                self._path = clean_path(unescape_filename(self.part.file_name))
        return self._path

    def entries(self) -> DirIterator:
        """Returns the iterator over this directory.  A directory can only be
        read once, so every call returns the same iterator.
        """
        if self._entries is None:
            self._entries = DirIterator(self)
        return self._entries

    def __iter__(self) -> DirIterator:
        return self.entries()

    def close(self) -> None:
        if self.part is not None:
            self.part.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={self.path!r}, media_type={self.media_type!r})"


def walk(directory: Directory, path: str = "") -> Iterator[tuple[str, Node]]:
    """
    Yields ``(path, node)`` for everything below ``directory``, depth first.  A
    directory is yielded before its entries, which are read right after it.
    """
    for name, node in directory.entries():
        child = posixpath.join(path, name) if path else name
        if isinstance(node, Directory):
            yield child, node
            yield from walk(node, child)
        elif isinstance(node, (File, Symlink)):
            yield child, node
        else:  # pragma: no cover (error case)
            raise TypeError("Unknown node type: %r" % node)


def create_tree(
    headers: Mapping[str, str | bytes], input_stream: SupportsRead, config: dict[Any, Any] = {}
) -> Directory:
    """
    Creates the root :class:`Directory` of a multipart body.

    :param headers: the request headers.  Content-Type is required and must be
                    a directory media type with a boundary; Content-Length is
                    honoured if present.

    :param input_stream: a readable stream with the body.

    :param config: overrides for :data:`DEFAULT_CONFIG`.
    """
    logger = logging.getLogger(__name__)

    conf: TreeConfig = DEFAULT_CONFIG.copy()
    conf.update(config)  # type: ignore[typeddict-item]

    content_type = headers.get("Content-Type")
    if content_type is None:
        logger.warning("No Content-Type header given")
        raise ValueError("No Content-Type header given!")

    media_type, params = parse_media_type(content_type)
    if not is_directory(media_type):
        raise NotDirectoryError("Not a directory media type: %r" % media_type)

    boundary = params.get("boundary")
    if not boundary:
        logger.error("No boundary given")
        raise TreeError("No boundary given")

    content_length: int | None = None
    raw_length = headers.get("Content-Length")
    if raw_length is not None:
        content_length = int(raw_length)

    reader = PartReader(
        input_stream,
        boundary,
        chunk_size=conf["CHUNK_SIZE"],
        content_length=content_length,
        max_size=conf["MAX_BODY_SIZE"],
        error_on_bad_cte=conf["ERROR_ON_BAD_CTE"],
    )
    return Directory.from_reader(reader, media_type, strict=conf["STRICT_SCOPE"])


def parse_tree(
    headers: Mapping[str, str | bytes],
    input_stream: SupportsRead,
    on_file: OnEntryCallback | None = None,
    on_symlink: OnEntryCallback | None = None,
    on_directory: OnEntryCallback | None = None,
    config: dict[Any, Any] = {},
) -> None:
    """
    Decodes a whole multipart body, calling ``on_file``, ``on_symlink`` or
    ``on_directory`` with ``(path, node)`` for each entry, in order.  File
    contents a callback doesn't read are skipped.
    """
    root = create_tree(headers, input_stream, config=config)
    for path, node in walk(root):
        if isinstance(node, Directory):
            callback = on_directory
        elif isinstance(node, File):
            callback = on_file
        elif isinstance(node, Symlink):
            callback = on_symlink
        else:  # pragma: no cover (error case)
            raise TypeError("Unknown node type: %r" % node)

        if callback is not None:
            callback(path, node)
