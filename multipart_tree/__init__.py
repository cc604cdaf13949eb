# This is the canonical package information.
__author__ = "The multipart-tree authors"
__license__ = "Apache"

# We get the version from a sub-file that can be automatically generated.
from ._version import __version__
from .nodes import File, Node, Symlink
from .parts import Part, PartReader, parse_media_type
from .tree import (
    DirIterator,
    Directory,
    LookaheadBuffer,
    create_tree,
    parse_tree,
    walk,
)

__all__ = (
    "__version__",
    "DirIterator",
    "Directory",
    "File",
    "LookaheadBuffer",
    "Node",
    "Part",
    "PartReader",
    "Symlink",
    "create_tree",
    "parse_media_type",
    "parse_tree",
    "walk",
)
