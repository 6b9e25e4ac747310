from __future__ import annotations

import zipfile
from pathlib import Path
from typing import Optional

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""


def chapter_html(title: str, body: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml"><head>'
        f"<title>{title}</title>"
        '<link rel="stylesheet" type="text/css" href="../Styles/book.css"/>'
        f"</head><body>{body}</body></html>"
    )


def nav_xhtml(items: str) -> str:
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">'
        '<head><title>Contents</title></head><body>'
        f'<nav epub:type="toc"><ol>{items}</ol></nav>'
        "</body></html>"
    )


def write_epub(
    path: Path,
    chapters: list[tuple[str, str]],
    *,
    nav: Optional[str] = None,
    ncx: Optional[str] = None,
    images: Optional[dict[str, bytes]] = None,
    title: str = "Test Book",
    author: str = "Author",
    cover: Optional[str] = None,
) -> Path:
    """Write a small EPUB.

    ``chapters`` holds ``(file name under OEBPS/Text, xhtml)`` pairs, ``images``
    maps names under ``OEBPS/Images`` to bytes.
    """
    images = images or {}
    manifest = []
    spine = []
    for idx, (name, _) in enumerate(chapters):
        manifest.append(f'<item id="c{idx}" href="Text/{name}" media-type="application/xhtml+xml"/>')
        spine.append(f'<itemref idref="c{idx}"/>')
    if nav is not None:
        manifest.append('<item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>')
    if ncx is not None:
        manifest.append('<item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>')
    for idx, name in enumerate(images):
        props = ' properties="cover-image"' if name == cover else ""
        manifest.append(f'<item id="img{idx}" href="Images/{name}" media-type="image/png"{props}/>')

    opf = (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="uid">'
        '<metadata xmlns:dc="http://purl.org/dc/elements/1.1/">'
        f'<dc:identifier id="uid">urn:test</dc:identifier><dc:title>{title}</dc:title>'
        f"<dc:creator>{author}</dc:creator><dc:language>en</dc:language>"
        "</metadata>"
        f"<manifest>{''.join(manifest)}</manifest>"
        f"<spine>{''.join(spine)}</spine>"
        "</package>"
    )

    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr("OEBPS/content.opf", opf)
        zf.writestr("OEBPS/Styles/book.css", "p { margin: 0; }")
        for name, content in chapters:
            zf.writestr(f"OEBPS/Text/{name}", content)
        if nav is not None:
            zf.writestr("OEBPS/nav.xhtml", nav)
        if ncx is not None:
            zf.writestr("OEBPS/toc.ncx", ncx)
        for name, data in images.items():
            zf.writestr(f"OEBPS/Images/{name}", data)
    return path
