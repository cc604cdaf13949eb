import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from multipart_tree.tree import PartScope, part_scope, split_path, unescape_filename


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    name = unescape_filename(fdp.ConsumeRandomString())
    parent, base = split_path(name)
    assert "/" not in base
    assert part_scope(parent, parent) == PartScope.DIRECT_CHILD
    assert part_scope(parent, fdp.ConsumePath()) in PartScope


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
