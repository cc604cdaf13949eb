import io
import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from multipart_tree.exceptions import FormParserError
    from multipart_tree.nodes import File
    from multipart_tree.tree import create_tree, walk

BOUNDARY = "boundary"
CONTENT_TYPES = ["", "application/octet-stream", "application/symlink", "application/x-directory", "text/plain"]


def drain(body: bytes, chunk_size: int) -> None:
    headers = {"Content-Type": f"multipart/form-data; boundary={BOUNDARY}"}
    root = create_tree(headers, io.BytesIO(body), config={"CHUNK_SIZE": chunk_size})
    for _, node in walk(root):
        if isinstance(node, File):
            node.read()


def fuzz_random_body(fdp: EnhancedDataProvider) -> None:
    drain(fdp.ConsumeRandomBytes(), fdp.ConsumeIntInRange(1, 64))


def fuzz_structured_body(fdp: EnhancedDataProvider) -> None:
    body = ""
    for _ in range(fdp.ConsumeIntInRange(0, 8)):
        body += (
            f"--{BOUNDARY}\r\n"
            f'Content-Disposition: form-data; name="file"; filename="{fdp.ConsumePath()}"\r\n'
            f"Content-Type: {fdp.PickValueInList(CONTENT_TYPES)}\r\n\r\n"
            f"{fdp.ConsumeUnicodeNoSurrogates(16)}\r\n"
        )
    body += f"--{BOUNDARY}--\r\n"
    drain(body.encode("utf-8", errors="ignore"), fdp.ConsumeIntInRange(1, 64))


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [fuzz_random_body, fuzz_structured_body]
    target = fdp.PickValueInList(targets)

    try:
        target(fdp)
    except FormParserError:
        return


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
