from __future__ import annotations

import unittest
from io import BytesIO

from multipart_tree.exceptions import MediaTypeError, MultipartParseError
from multipart_tree.parts import PartHeaders, PartReader, parse_media_type

from .bodies import build_body, entry, make_reader


class TestParseMediaType(unittest.TestCase):
    def test_simple(self) -> None:
        t, p = parse_media_type("application/octet-stream")
        self.assertEqual(t, "application/octet-stream")
        self.assertEqual(p, {})

    def test_params(self) -> None:
        t, p = parse_media_type('multipart/form-data; boundary="abc;def"; charset=utf-8')
        self.assertEqual(t, "multipart/form-data")
        self.assertEqual(p, {"boundary": "abc;def", "charset": "utf-8"})

    def test_lowercases_type(self) -> None:
        t, _ = parse_media_type("Application/X-Directory")
        self.assertEqual(t, "application/x-directory")

    def test_bytes(self) -> None:
        t, p = parse_media_type(b"text/plain; charset=latin-1")
        self.assertEqual(t, "text/plain")
        self.assertEqual(p, {"charset": "latin-1"})

    def test_bare_token(self) -> None:
        t, _ = parse_media_type("attachment")
        self.assertEqual(t, "attachment")

    def test_trailing_semicolon(self) -> None:
        self.assertEqual(parse_media_type("text/plain;"), ("text/plain", {}))
        self.assertEqual(parse_media_type("text/plain; a=b ; "), ("text/plain", {"a": "b"}))

    def test_quoted_values(self) -> None:
        _, p = parse_media_type(r'attachment; filename="a \"b\" c"; Name=""')
        self.assertEqual(p, {"filename": 'a "b" c', "name": ""})

    def test_extended_value(self) -> None:
        _, p = parse_media_type("attachment; filename=plain; filename*=UTF-8''caf%C3%A9")
        self.assertEqual(p, {"filename": "café"})

    def test_invalid(self) -> None:
        values = (
            "not a type",
            "/plain",
            "text/",
            "a/b/c",
            "text/pl@in",
            "text/plain; =x",
            "text/plain;;",
            "text/plain; a",
            "text/plain; a=",
            "text/plain; a b=c",
            "text/plain; a=b c",
            'text/plain; a="unterminated',
            "text/plain; a=1; A=2",
            "multipart/form-data; boundary",
        )
        for value in values:
            with self.assertRaises(MediaTypeError) as cm:
                parse_media_type(value)
            self.assertEqual(cm.exception.value, value)


class TestPartHeaders(unittest.TestCase):
    def setUp(self) -> None:
        self.h = PartHeaders([("Content-Type", "text/plain"), ("abspath", "/x"), ("content-type", "ignored")])

    def test_case_insensitive(self) -> None:
        self.assertEqual(self.h["content-type"], "text/plain")
        self.assertEqual(self.h.get("ABSPATH"), "/x")
        self.assertIn("CONTENT-TYPE", self.h)
        self.assertNotIn("Content-Length", self.h)

    def test_iteration_keeps_names(self) -> None:
        self.assertEqual(list(self.h), ["Content-Type", "abspath"])
        self.assertEqual(len(self.h), 2)

    def test_missing(self) -> None:
        self.assertIsNone(self.h.get("Content-Disposition"))
        with self.assertRaises(KeyError):
            self.h["Content-Disposition"]


class TestPartReader(unittest.TestCase):
    def test_simple(self) -> None:
        r = make_reader([entry("a.txt", body=b"first"), entry("b.txt", "text/plain", b"second", abspath="/b.txt")])

        p = r.next_part()
        assert p is not None
        self.assertEqual(p.file_name, "a.txt")
        self.assertEqual(p.form_name, "file")
        self.assertEqual(p.content_type, "application/octet-stream")
        self.assertEqual(p.read(), b"first")

        p = r.next_part()
        assert p is not None
        self.assertEqual(p.file_name, "b.txt")
        self.assertEqual(p.get_header("abspath"), "/b.txt")
        self.assertEqual(p.read(), b"second")

        self.assertIsNone(r.next_part())
        self.assertIsNone(r.next_part())

    def test_file_name_is_not_unescaped(self) -> None:
        r = make_reader([entry("dir/with space.txt")])
        p = r.next_part()
        assert p is not None
        self.assertEqual(p.file_name, "dir%2Fwith+space.txt")

    def test_file_name_keeps_windows_paths(self) -> None:
        body = (
            b"--boundary\r\n"
            b'Content-Disposition: form-data; name="file"; filename="C:\\dir\\x"\r\n'
            b"\r\n"
            b"data\r\n"
            b"--boundary--\r\n"
        )
        p = PartReader(BytesIO(body), "boundary").next_part()
        assert p is not None
        self.assertEqual(p.file_name, "C:\\dir\\x")

    def test_bad_disposition_has_no_names(self) -> None:
        body = b'--boundary\r\nContent-Disposition: form-data; filename\r\n\r\ndata\r\n--boundary--\r\n'
        with self.assertLogs("multipart_tree.parts", level="WARNING"):
            p = PartReader(BytesIO(body), "boundary").next_part()
            assert p is not None
            self.assertEqual(p.file_name, "")
            self.assertEqual(p.form_name, "")

    def test_missing_content_type(self) -> None:
        r = make_reader([entry("a", None, b"data")])
        p = r.next_part()
        assert p is not None
        self.assertEqual(p.content_type, "")

    def test_single_byte_chunks(self) -> None:
        body = b"x" * 100 + b"\r\n--notaboundary\r\n" + b"y" * 100
        r = make_reader([entry("a", body=body), entry("b", body=b"tail")], chunk_size=1)

        p = r.next_part()
        assert p is not None
        self.assertEqual(p.read(), body)
        p = r.next_part()
        assert p is not None
        self.assertEqual(p.read(), b"tail")
        self.assertIsNone(r.next_part())

    def test_partial_reads(self) -> None:
        r = make_reader([entry("a", body=b"0123456789")])
        p = r.next_part()
        assert p is not None
        self.assertEqual(p.read(4), b"0123")
        self.assertEqual(p.read(4), b"4567")
        self.assertEqual(p.read(4), b"89")
        self.assertEqual(p.read(4), b"")

    def test_skips_unread_data(self) -> None:
        r = make_reader([entry("a", body=b"a" * 1000), entry("b", body=b"b")], chunk_size=16)
        p = r.next_part()
        assert p is not None
        self.assertEqual(p.read(1), b"a")

        q = r.next_part()
        assert q is not None
        self.assertEqual(q.read(), b"b")
        self.assertTrue(p.closed)

    def test_read_closed_part(self) -> None:
        r = make_reader([entry("a", body=b"data"), entry("b")])
        p = r.next_part()
        assert p is not None
        r.next_part()
        with self.assertRaises(ValueError):
            p.read()

    def test_iteration(self) -> None:
        r = make_reader([entry("a"), entry("b"), entry("c")])
        self.assertEqual([p.file_name for p in r], ["a", "b", "c"])

    def test_empty_stream(self) -> None:
        r = PartReader(BytesIO(b""), "boundary")
        self.assertIsNone(r.next_part())

    def test_no_parts(self) -> None:
        r = PartReader(BytesIO(b"--boundary--\r\n"), "boundary")
        self.assertIsNone(r.next_part())

    def test_truncated_stream(self) -> None:
        r = PartReader(BytesIO(b"--boundary\r\nContent-Type: text/plain\r\n\r\ndata"), "boundary")
        p = r.next_part()
        assert p is not None
        with self.assertRaises(MultipartParseError):
            p.read()

    def test_truncated_in_headers(self) -> None:
        r = PartReader(BytesIO(b"--boundary\r\nContent-Ty"), "boundary")
        with self.assertRaises(MultipartParseError):
            r.next_part()

    def test_content_length(self) -> None:
        body = build_body([entry("a", body=b"data")])
        r = PartReader(BytesIO(body), "boundary", content_length=len(body) - 4)
        with self.assertRaises(MultipartParseError):
            list(r)

        r = PartReader(BytesIO(body + b"trailing garbage"), "boundary", content_length=len(body))
        self.assertEqual([p.read() for p in r], [b"data"])

    def test_bad_start_boundary(self) -> None:
        r = PartReader(BytesIO(b"--boundaryXX\r\n"), "boundary")
        with self.assertRaises(MultipartParseError):
            r.next_part()

    def test_base64(self) -> None:
        r = make_reader([entry("a", body=b"VGVzdCAxMjM=", Content_Transfer_Encoding="base64")], chunk_size=5)
        p = r.next_part()
        assert p is not None
        self.assertEqual(p.read(), b"Test 123")

    def test_quoted_printable(self) -> None:
        r = make_reader([entry("a", body=b"foo=3Dbar", Content_Transfer_Encoding="quoted-printable")])
        p = r.next_part()
        assert p is not None
        self.assertEqual(p.read(), b"foo=bar")

    def test_unknown_transfer_encoding(self) -> None:
        parts = [entry("a", body=b"raw", Content_Transfer_Encoding="rot13")]

        with self.assertLogs("multipart_tree.parts", level="WARNING"):
            p = make_reader(parts).next_part()
        assert p is not None
        self.assertEqual(p.read(), b"raw")

        with self.assertRaises(MultipartParseError):
            make_reader(parts, error_on_bad_cte=True).next_part()

    def test_invalid_chunk_size(self) -> None:
        with self.assertRaises(ValueError):
            PartReader(BytesIO(b""), "boundary", chunk_size=0)

    def test_repr(self) -> None:
        r = make_reader([entry("a")])
        repr(r)
        repr(r.next_part())
