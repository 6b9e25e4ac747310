import base64
import tempfile
import unittest
import zipfile
from pathlib import Path

from quire.images import ArchiveImageResolver, guess_image_mime_type, inline_chapter_images

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


class GuessImageMimeTypeTests(unittest.TestCase):
    def test_known_extensions(self) -> None:
        self.assertEqual(guess_image_mime_type("a.JPG"), "image/jpeg")
        self.assertEqual(guess_image_mime_type("a.jpeg"), "image/jpeg")
        self.assertEqual(guess_image_mime_type("dir/a.png"), "image/png")
        self.assertEqual(guess_image_mime_type("a.gif"), "image/gif")
        self.assertEqual(guess_image_mime_type("a.svg"), "image/svg+xml")
        self.assertEqual(guess_image_mime_type("a.webp"), "image/webp")
        self.assertEqual(guess_image_mime_type("a.bmp"), "image/bmp")

    def test_unknown_extension(self) -> None:
        self.assertEqual(guess_image_mime_type("a.tiff"), "application/octet-stream")
        self.assertEqual(guess_image_mime_type("noext"), "application/octet-stream")


class ArchiveImageResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.archive_path = Path(self._tmp.name) / "book.epub"
        with zipfile.ZipFile(self.archive_path, "w") as zf:
            zf.writestr("img/cover.png", PNG_BYTES)
            zf.writestr("OEBPS/Images/Photo One.JPG", b"jpeg-bytes")
            zf.writestr("img/empty.png", b"")
            zf.writestr("text/ch01.xhtml", "<p/>")

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_resolves_relative_to_chapter_directory(self) -> None:
        with zipfile.ZipFile(self.archive_path) as zf:
            resolver = ArchiveImageResolver(zf)
            self.assertEqual(resolver.resolve("text/ch01.xhtml", "../img/cover.png"), PNG_BYTES)

    def test_lookup_is_case_insensitive_and_decodes_escapes(self) -> None:
        with zipfile.ZipFile(self.archive_path) as zf:
            resolver = ArchiveImageResolver(zf)
            data = resolver.resolve("OEBPS/Text/ch.xhtml", "../images/photo%20one.jpg?v=2#frag")
            self.assertEqual(data, b"jpeg-bytes")

    def test_misses_return_none(self) -> None:
        with zipfile.ZipFile(self.archive_path) as zf:
            resolver = ArchiveImageResolver(zf)
            self.assertIsNone(resolver.resolve("text/ch01.xhtml", "../img/missing.png"))
            self.assertIsNone(resolver.resolve("text/ch01.xhtml", "../img/empty.png"))
            self.assertIsNone(resolver.resolve("text/ch01.xhtml", "https://example.com/a.png"))
            self.assertIsNone(resolver.resolve("text/ch01.xhtml", "data:image/png;base64,AAAA"))
            self.assertIsNone(resolver.resolve("text/ch01.xhtml", "CID:part1"))
            self.assertIsNone(resolver.resolve("text/ch01.xhtml", "  "))


class InlineChapterImagesTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.archive_path = Path(self._tmp.name) / "book.epub"
        with zipfile.ZipFile(self.archive_path, "w") as zf:
            zf.writestr("img/cover.png", PNG_BYTES)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_round_trip_to_data_uri(self) -> None:
        html = '<p><img class="c" src="../img/cover.png" alt="Cover"/></p>'
        result = inline_chapter_images(html, self.archive_path, "text/ch01.xhtml")
        expected_uri = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
        self.assertEqual(result, f'<p><img class="c" src="{expected_uri}" alt="Cover"/></p>')

    def test_unresolved_sources_stay_byte_for_byte(self) -> None:
        html = (
            "<p><IMG SRC='../img/missing.png'></p>"
            '<img src="http://example.com/x.png">'
            '<img alt="no source">'
        )
        self.assertEqual(inline_chapter_images(html, self.archive_path, "text/ch01.xhtml"), html)

    def test_only_resolvable_images_change(self) -> None:
        html = '<img src="../img/cover.png"><img src="../img/other.png">'
        result = inline_chapter_images(html, self.archive_path, "text/ch01.xhtml")
        self.assertIn("data:image/png;base64,", result)
        self.assertTrue(result.endswith('<img src="../img/other.png">'))

    def test_missing_or_broken_archive_leaves_html(self) -> None:
        html = '<img src="../img/cover.png">'
        self.assertEqual(inline_chapter_images(html, Path(self._tmp.name) / "nope.epub", "text/ch01.xhtml"), html)
        broken = Path(self._tmp.name) / "broken.epub"
        broken.write_bytes(b"not a zip")
        self.assertEqual(inline_chapter_images(html, broken, "text/ch01.xhtml"), html)
        self.assertEqual(inline_chapter_images(html, None, "text/ch01.xhtml"), html)

    def test_corrupt_member_only_skips_that_image(self) -> None:
        archive = Path(self._tmp.name) / "corrupt.epub"
        with zipfile.ZipFile(archive, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr("img/good.png", PNG_BYTES)
            zf.writestr("img/bad.png", b"x" * 4096)
        with zipfile.ZipFile(archive) as zf:
            info = zf.getinfo("img/bad.png")
        raw = bytearray(archive.read_bytes())
        name_len = int.from_bytes(raw[info.header_offset + 26 : info.header_offset + 28], "little")
        extra_len = int.from_bytes(raw[info.header_offset + 28 : info.header_offset + 30], "little")
        data_start = info.header_offset + 30 + name_len + extra_len
        # 0xFF starts a deflate block of the reserved type, which zlib rejects.
        raw[data_start : data_start + info.compress_size] = b"\xff" * info.compress_size
        archive.write_bytes(bytes(raw))

        html = '<img src="../img/good.png"><img src="../img/bad.png">'
        with self.assertLogs("quire.images", level="WARNING"):
            result = inline_chapter_images(html, archive, "text/ch01.xhtml")
        expected_uri = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode("ascii")
        self.assertEqual(result, f'<img src="{expected_uri}"><img src="../img/bad.png">')


if __name__ == "__main__":
    unittest.main()
