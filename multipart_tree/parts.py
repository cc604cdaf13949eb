"""Pull-based access to the parts of a multipart body.

The byte-level work is done by python-multipart's push parser; this module
turns its callbacks into a sequence of :class:`Part` objects whose bodies are
read lazily from the underlying stream.
"""

from __future__ import annotations

import io
import logging
import re
from collections import deque
from collections.abc import Mapping
from typing import TYPE_CHECKING
from urllib.parse import unquote

from python_multipart.decoders import Base64Decoder, QuotedPrintableDecoder
from python_multipart.multipart import MultipartParser

from .exceptions import MediaTypeError, MultipartParseError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Iterator
    from typing import Protocol

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    class SupportsWrite(Protocol):
        def write(self, __data: bytes) -> int: ...

        def finalize(self) -> None: ...


DEFAULT_CHUNK_SIZE = 1048576

# Per RFC 7230 section 3.2.6.
_TOKEN = r"[!#$%&'*+\-.^_`|~0-9A-Za-z]+"
_QUOTED_STRING = r'"(?:[^"\\]|\\.)*"'
MEDIA_TYPE_RE = re.compile(r"^%s(?:/%s)?$" % (_TOKEN, _TOKEN))
MEDIA_PARAM_RE = re.compile(r"\s*;\s*(%s)\s*=\s*(%s|%s)" % (_TOKEN, _TOKEN, _QUOTED_STRING))

# Inside a quoted string a backslash only escapes a tspecial.
QUOTED_PAIR_RE = re.compile(r'\\([()<>@,;:\\"/\[\]?=])')

# RFC 2231 extended value: charset'language'percent-encoded-value
EXTENDED_VALUE_RE = re.compile(r"^([^']*)'[^']*'(.*)$")


def _decode_extended_value(value: str) -> str | None:
    m = EXTENDED_VALUE_RE.match(value)
    if m is None:
        return None
    charset = m.group(1).lower()
    if charset not in ("utf-8", "us-ascii"):
        return None
    try:
        return unquote(m.group(2), encoding=charset, errors="strict")
    except UnicodeDecodeError:
        return None


def _parse_media_params(value: str, rest: str) -> dict[str, str]:
    params: dict[str, str] = {}
    extended: dict[str, str] = {}
    pos = 0
    while True:
        m = MEDIA_PARAM_RE.match(rest, pos)
        if m is None:
            break
        pos = m.end()

        name, param = m.group(1).lower(), m.group(2)
        if param.startswith('"'):
            param = QUOTED_PAIR_RE.sub(r"\1", param[1:-1])

        target = params
        if name.endswith("*"):
            name, target = name[:-1], extended
            decoded = _decode_extended_value(param)
            if decoded is None:
                continue
            param = decoded

        if name in target:
            raise MediaTypeError("Duplicate media parameter %r in %r" % (name, value), value)
        target[name] = param

    # A single trailing semicolon is tolerated.
    if rest[pos:].strip() not in ("", ";"):
        raise MediaTypeError("Invalid media parameter in %r" % value, value)

    params.update(extended)
    return params


def parse_media_type(value: str | bytes) -> tuple[str, dict[str, str]]:
    """
    Parses a Content-Type (or Content-Disposition) header into a value in the
    following format:
        (media_type, {parameters})

    The media type and the parameter names are lower-cased.  A media type that
    isn't a token or a ``type/subtype`` pair of tokens, a parameter that isn't
    ``name=value`` with ``name`` a token and ``value`` a token or a quoted
    string, and a repeated parameter all raise :class:`MediaTypeError`.
    RFC 2231 ``name*=`` values in UTF-8 or US-ASCII are decoded and take
    precedence over plain ``name=`` values.
    """
    if isinstance(value, bytes):
        value = value.decode("latin-1")

    ctype, sep, rest = value.partition(";")
    media_type = ctype.strip().lower()
    if not MEDIA_TYPE_RE.match(media_type):
        raise MediaTypeError("Invalid media type: %r" % value, value)

    return media_type, _parse_media_params(value, sep + rest)


class PartHeaders(Mapping):
    """The headers of a single part.  Lookups ignore case, iteration keeps the
    names as they were sent, in order.  A repeated header keeps its first value.
    """

    def __init__(self, items: list[tuple[str, str]] = []) -> None:
        self._items = list(items)
        self._index: dict[str, str] = {}
        for name, value in self._items:
            self._index.setdefault(name.lower(), value)

    def __getitem__(self, name: str) -> str:
        return self._index[name.lower()]

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._index

    def __iter__(self) -> Iterator[str]:
        seen = set()
        for name, _ in self._items:
            if name.lower() not in seen:
                seen.add(name.lower())
                yield name

    def __len__(self) -> int:
        return len(self._index)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._items!r})"


class _PartBody:
    """Sink for the decoded data of one part.  Data written after the part was
    closed is dropped.
    """

    def __init__(self) -> None:
        self._chunks: deque[bytes] = deque()
        self.complete = False
        self.discard = False

    @property
    def pending(self) -> bool:
        return bool(self._chunks)

    def write(self, data: bytes) -> int:
        if data and not self.discard:
            self._chunks.append(bytes(data))
        return len(data)

    def finalize(self) -> None:
        self.complete = True

    def take(self, size: int) -> bytes:
        out = []
        while self._chunks and size > 0:
            chunk = self._chunks.popleft()
            if len(chunk) > size:
                self._chunks.appendleft(chunk[size:])
                chunk = chunk[:size]
            out.append(chunk)
            size -= len(chunk)
        return b"".join(out)

    def clear(self) -> None:
        self.discard = True
        self._chunks.clear()


class Part(io.RawIOBase):
    """One part of a multipart body.

    The body can be read once, front to back.  Reading pulls more data from the
    :class:`PartReader` that produced the part as needed, so only the chunk
    currently being parsed is ever held in memory.
    """

    def __init__(self, reader: PartReader, headers: PartHeaders) -> None:
        super().__init__()
        self._reader = reader
        self._headers = headers
        self._body = _PartBody()
        self._disposition: dict[str, str] | None = None

    @property
    def headers(self) -> PartHeaders:
        return self._headers

    def get_header(self, name: str, default: str | None = None) -> str | None:
        return self._headers.get(name, default)

    @property
    def content_type(self) -> str:
        """The raw Content-Type header, or an empty string."""
        return self._headers.get("Content-Type", "")

    def _disposition_param(self, key: str) -> str:
        if self._disposition is None:
            disposition = self._headers.get("Content-Disposition")
            self._disposition = {}
            if disposition:
                try:
                    _, self._disposition = parse_media_type(disposition)
                except MediaTypeError as exc:
                    self._reader.logger.warning("Ignoring Content-Disposition: %s", exc)
        value = self._disposition.get(key)
        if value is None:
            return ""
        # Header values arrive as latin-1; the parameters are usually UTF-8.
        try:
            return value.encode("latin-1").decode("utf-8")
        except (UnicodeEncodeError, UnicodeDecodeError):
            return value

    @property
    def file_name(self) -> str:
        """The ``filename`` parameter of the Content-Disposition header, exactly
        as sent (still escaped), or an empty string.
        """
        return self._disposition_param("filename")

    @property
    def form_name(self) -> str:
        return self._disposition_param("name")

    def readable(self) -> bool:
        return True

    def readinto(self, b: bytearray | memoryview) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("I/O operation on closed part")

        body = self._body
        while not body.pending and not body.complete:
            if not self._reader._fill():
                break

        data = body.take(len(b))
        n = len(data)
        b[:n] = data
        return n

    def close(self) -> None:
        if not self.closed:
            self._body.clear()
        super().close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(file_name={self.file_name!r}, content_type={self.content_type!r})"


class PartReader:
    """
    Reads the parts of a multipart body from a stream, one at a time.

    :param stream: an object with a ``read(n)`` method returning bytes.

    :param boundary: the multipart boundary, without the leading dashes.

    :param chunk_size: the number of bytes requested from the stream per read.

    :param content_length: if given, no more than this many bytes are read.

    :param max_size: the maximum number of bytes handed to the parser.

    :param error_on_bad_cte: raise on an unknown Content-Transfer-Encoding
                             instead of passing the data through.
    """

    def __init__(
        self,
        stream: SupportsRead,
        boundary: bytes | str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        content_length: int | None = None,
        max_size: float = float("inf"),
        error_on_bad_cte: bool = False,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        if chunk_size < 1:
            raise ValueError("chunk_size must be a positive number, not %r" % chunk_size)

        self._stream = stream
        self.chunk_size = chunk_size
        self._remaining: float = float("inf") if content_length is None else content_length
        self.error_on_bad_cte = error_on_bad_cte
        self.bytes_read = 0

        self._finished = False
        self._ready: deque[Part] = deque()
        self._current: Part | None = None
        self._writer: SupportsWrite | None = None

        header_name: list[bytes] = []
        header_value: list[bytes] = []
        headers: list[tuple[str, str]] = []

        def on_part_begin() -> None:
            del headers[:]

        def on_header_field(data: bytes, start: int, end: int) -> None:
            header_name.append(data[start:end])

        def on_header_value(data: bytes, start: int, end: int) -> None:
            header_value.append(data[start:end])

        def on_header_end() -> None:
            headers.append((b"".join(header_name).decode("latin-1"), b"".join(header_value).decode("latin-1")))
            del header_name[:]
            del header_value[:]

        def on_headers_finished() -> None:
            part = Part(self, PartHeaders(headers))
            self._writer = self._writer_for(part)
            self._ready.append(part)
            self.logger.debug("Headers finished for %r", part)

        def on_part_data(data: bytes, start: int, end: int) -> None:
            assert self._writer is not None
            self._writer.write(data[start:end])

        def on_part_end() -> None:
            if self._writer is not None:
                self._writer.finalize()
                self._writer = None

        def on_end() -> None:
            self._finished = True

        self._parser = MultipartParser(
            boundary,
            callbacks={
                "on_part_begin": on_part_begin,
                "on_part_data": on_part_data,
                "on_part_end": on_part_end,
                "on_header_field": on_header_field,
                "on_header_value": on_header_value,
                "on_header_end": on_header_end,
                "on_headers_finished": on_headers_finished,
                "on_end": on_end,
            },
            max_size=max_size,
        )

    def _writer_for(self, part: Part) -> SupportsWrite:
        transfer_encoding = part.headers.get("Content-Transfer-Encoding", "7bit").strip().lower()

        if transfer_encoding in ("binary", "8bit", "7bit"):
            return part._body
        elif transfer_encoding == "base64":
            return Base64Decoder(part._body)
        elif transfer_encoding == "quoted-printable":
            return QuotedPrintableDecoder(part._body)

        self.logger.warning("Unknown Content-Transfer-Encoding: %r", transfer_encoding)
        if self.error_on_bad_cte:
            raise MultipartParseError(f'Unknown Content-Transfer-Encoding "{transfer_encoding!r}"')
        return part._body

    def _fill(self) -> bool:
        """Feeds one chunk of the stream to the parser.  Returns False once the
        closing boundary has been seen.
        """
        if self._finished:
            return False

        max_readable = int(min(self._remaining, self.chunk_size))
        buff = self._stream.read(max_readable) if max_readable > 0 else b""
        if not buff:
            if self.bytes_read == 0:
                self.logger.debug("Empty body, no parts")
                self._finished = True
                return False
            msg = "Stream ended before the closing boundary (%d bytes read)" % self.bytes_read
            self.logger.warning(msg)
            raise MultipartParseError(msg)

        self._remaining -= len(buff)
        self.bytes_read += len(buff)
        self._parser.write(buff)
        return True

    def next_part(self) -> Part | None:
        """Returns the next part, or None once the closing boundary is reached.
        Whatever is left unread of the previous part is skipped.
        """
        if self._current is not None:
            self._current.close()
            self._current = None

        while not self._ready:
            if not self._fill():
                return None

        self._current = self._ready.popleft()
        return self._current

    def __iter__(self) -> Iterator[Part]:
        while True:
            part = self.next_part()
            if part is None:
                return
            yield part

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(parser={self._parser!r})"
