"""The nodes a decoded tree is made of.  Directories live in :mod:`multipart_tree.tree`."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .exceptions import NotSupportedError

if TYPE_CHECKING:  # pragma: no cover
    from types import TracebackType

    from .parts import Part


class Node:
    """
    Base class of everything a decoded tree is made of: a :class:`File`, a
    :class:`Symlink` or a :class:`~multipart_tree.tree.Directory`.  Nodes are
    context managers; leaving the block closes the node.
    """

    def close(self) -> None:
        pass

    def size(self) -> int:
        raise NotSupportedError("%s has no known size" % self.__class__.__name__)

    def __enter__(self) -> Node:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()


class File(Node):
    """
    A regular file whose contents are streamed straight from its part.  The
    body can be read only once.

    :param body: the part (or any readable object) holding the contents.

    :param abspath: the ``abspath`` header of the part, if it had one.  It is
                    carried along as a hint and never interpreted.
    """

    def __init__(self, body: Part, abspath: str | None = None) -> None:
        self._body = body
        self.abspath = abspath

    def read(self, size: int = -1) -> bytes:
        return self._body.read(size)

    def readinto(self, b: bytearray | memoryview) -> int:
        return self._body.readinto(b)

    @property
    def closed(self) -> bool:
        return self._body.closed

    def close(self) -> None:
        self._body.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(abspath={self.abspath!r})"


class Symlink(Node):
    """A symbolic link.  The target is read eagerly, so no stream is held."""

    def __init__(self, target: str) -> None:
        self.target = target

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Symlink):
            return self.target == other.target
        else:
            return NotImplemented

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(target={self.target!r})"
