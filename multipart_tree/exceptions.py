from python_multipart.exceptions import DecodeError, FormParserError, MultipartParseError

__all__ = (
    "DecodeError",
    "FileError",
    "FormParserError",
    "MediaTypeError",
    "MultipartParseError",
    "NotDirectoryError",
    "NotSupportedError",
    "ProtocolError",
    "TreeError",
)


class TreeError(FormParserError):
    """Base error class for the tree decoder."""


class ProtocolError(TreeError):
    """Raised when the traversal contract is broken - for example when a second
    part is pushed back before the first one was pulled again, or when the
    current entry of an iterator is requested while it has none.
    """


class MediaTypeError(TreeError):
    """This exception is raised when a Content-Type value can't be parsed as a
    media type.
    """

    #: The offending header value.
    value = ""

    def __init__(self, msg: str, value: str = "") -> None:
        super().__init__(msg)
        self.value = value


class NotDirectoryError(TreeError):
    """Raised when a tree root is built from a media type that doesn't describe
    a directory.
    """


class NotSupportedError(TreeError):
    """Raised for operations a streamed node can't answer, such as its size."""


class FileError(TreeError, OSError):
    """Exception class for I/O problems while reading a part body."""
