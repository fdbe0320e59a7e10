import asyncio
import zipfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from monoshelf.core.models import BookMetadata, Location, LocationEdge, NavNode

CONTAINER_XML = """<?xml version="1.0" encoding="UTF-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
"""

OPF_XML = """<?xml version="1.0" encoding="UTF-8"?>
<package version="3.0" unique-identifier="BookId" xmlns="http://www.idpf.org/2007/opf">
  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">
    <dc:identifier id="BookId">urn:uuid:mono-shelf-sample</dc:identifier>
    <dc:title>  Sample Book  </dc:title>
    <dc:creator>Ada Lovelace</dc:creator>
    <dc:language>en</dc:language>
  </metadata>
  <manifest>
    <item id="ncx" href="toc.ncx" media-type="application/x-dtbncx+xml"/>
    <item id="nav" href="nav.xhtml" media-type="application/xhtml+xml" properties="nav"/>
    <item id="intro" href="chapters/intro_01.xhtml" media-type="application/xhtml+xml"/>
    <item id="part" href="chapters/part-one.xhtml" media-type="application/xhtml+xml"/>
    <item id="two" href="chapters/chapter_two.xhtml" media-type="application/xhtml+xml"/>
    <item id="notes" href="chapters/appendix-notes.xhtml" media-type="application/xhtml+xml"/>
  </manifest>
  <spine toc="ncx">
    <itemref idref="intro"/>
    <itemref idref="part"/>
    <itemref idref="two"/>
    <itemref idref="notes"/>
  </spine>
</package>
"""

NCX_XML = """<?xml version="1.0" encoding="UTF-8"?>
<ncx xmlns="http://www.daisy.org/z3986/2005/ncx/" version="2005-1">
  <head><meta name="dtb:uid" content="urn:uuid:mono-shelf-sample"/></head>
  <docTitle><text>Sample Book</text></docTitle>
  <navMap>
    <navPoint id="np-intro" playOrder="1">
      <navLabel><text> Introduction </text></navLabel>
      <content src="chapters/intro_01.xhtml"/>
    </navPoint>
    <navPoint id="np-part" playOrder="2">
      <navLabel><text>Part One</text></navLabel>
      <content src="chapters/part-one.xhtml"/>
      <navPoint id="np-ch1" playOrder="3">
        <navLabel><text>Chapter One</text></navLabel>
        <content src="chapters/part-one.xhtml#ch1"/>
      </navPoint>
      <navPoint id="np-ch2" playOrder="4">
        <navLabel><text>Chapter Two</text></navLabel>
        <content src="chapters/chapter_two.xhtml"/>
      </navPoint>
    </navPoint>
  </navMap>
</ncx>
"""

NAV_XHTML = """<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml" xmlns:epub="http://www.idpf.org/2007/ops">
  <head><title>Contents</title></head>
  <body>
    <nav epub:type="toc" id="toc">
      <ol>
        <li><a href="chapters/intro_01.xhtml"> Introduction </a></li>
        <li><a href="chapters/part-one.xhtml">Part One</a>
          <ol>
            <li><a href="chapters/part-one.xhtml#ch1">Chapter One</a></li>
            <li><a href="chapters/chapter_two.xhtml">Chapter Two</a></li>
          </ol>
        </li>
      </ol>
    </nav>
  </body>
</html>
"""

def _chapter(title: str, paragraphs: List[str], extra: str = "") -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return f"""<?xml version="1.0" encoding="utf-8"?>
<html xmlns="http://www.w3.org/1999/xhtml">
  <head><title>{title}</title></head>
  <body><h1 id="ch1">{title}</h1>{body}{extra}</body>
</html>
"""

CHAPTERS = {
    "OEBPS/chapters/intro_01.xhtml": _chapter("Introduction", [
        "It was a quiet evening when the engine first turned over.",
        "Nobody in the room expected the cards to keep their order.",
    ]),
    "OEBPS/chapters/part-one.xhtml": _chapter("Part One", [
        "The first part concerns the loom and the cards that drive it.",
        "Each card carries a pattern of holes read one row at a time.",
    ], extra='<script>document.title = "owned"</script><p onclick="steal()">Click here.</p>'),
    "OEBPS/chapters/chapter_two.xhtml": _chapter("Chapter Two", [
        "The second chapter follows the numbers through the mill.",
        "Bernoulli numbers appear at the end of a long table of operations.",
    ]),
    "OEBPS/chapters/appendix-notes.xhtml": _chapter("Notes", [
        "These notes were written by the translator.",
    ]),
}

def build_sample_epub(target: Path) -> Path:
    """Writes a small EPUB with a nested TOC and one section left out of it."""
    epub_path = target / "sample.epub"
    with zipfile.ZipFile(epub_path, "w") as zf:
        zf.writestr("mimetype", "application/epub+zip", compress_type=zipfile.ZIP_STORED)
        zf.writestr("META-INF/container.xml", CONTAINER_XML)
        zf.writestr("OEBPS/content.opf", OPF_XML)
        zf.writestr("OEBPS/toc.ncx", NCX_XML)
        zf.writestr("OEBPS/nav.xhtml", NAV_XHTML)
        for name, content in CHAPTERS.items():
            zf.writestr(name, content)
    return epub_path

@pytest.fixture
def sample_epub(tmp_path: Path) -> Path:
    return build_sample_epub(tmp_path)

# --- Fake rendering collaborator ---

class FakeSubscription:
    def __init__(self, listeners: list, callback, sticky: bool = False):
        self._listeners = listeners
        self._callback = callback
        self.sticky = sticky
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True
        if not self.sticky and self._callback in self._listeners:
            self._listeners.remove(self._callback)

class FakeLocations:
    def __init__(self, count: int = 10, fraction: float = 0.0, fail: bool = False):
        self._target = count
        self._count = 0
        self.fraction = fraction
        self.fail = fail
        self.requested: List[int] = []

    async def generate(self, chars: int) -> None:
        self.requested.append(chars)
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("locations exploded")
        self._count = self._target

    def length(self) -> int:
        return self._count

    def percentage_from_cfi(self, cfi: str) -> float:
        return self.fraction

class FakeRendition:
    def __init__(self, book: "FakeBook", surface, flow: str, allow_scripted_content: bool):
        self.book = book
        self.surface = surface
        self.flow = flow
        self.allow_scripted_content = allow_scripted_content
        self.listeners: Dict[str, list] = {"rendered": [], "relocated": []}
        self.style = None
        self.displayed: List[Optional[str]] = []
        self.steps: List[str] = []
        self.destroyed = False

    def on(self, event_name, callback):
        self.listeners[event_name].append(callback)
        return FakeSubscription(self.listeners[event_name], callback, sticky=self.book.sticky_listeners)

    def apply_style(self, rules) -> None:
        self.style = rules

    async def display(self, target=None) -> None:
        if self.book.fail_display:
            raise RuntimeError("display failed")
        self.displayed.append(target)
        href = target or self.book.first_href
        self.surface.render(f"<p>{href}</p>", section_href=href.split("#")[0])
        self.emit("rendered", href)
        self.emit("relocated", Location(start=LocationEdge(cfi=f"cfi({href})", href=href)))

    async def next(self) -> None:
        self.steps.append("next")
        await asyncio.sleep(0)

    async def prev(self) -> None:
        self.steps.append("prev")
        await asyncio.sleep(0)

    def destroy(self) -> None:
        self.destroyed = True

    def emit(self, event_name, payload) -> None:
        for callback in list(self.listeners[event_name]):
            callback(payload)

class FakeBook:
    def __init__(self, data: bytes, toc=None, metadata=None, locations=None, fail_ready=False,
                 fail_display=False, gate: Optional[asyncio.Event] = None, sticky_listeners=False,
                 first_href="chapters/intro_01.xhtml"):
        self.data = data
        self.toc = toc if toc is not None else []
        self.metadata = metadata or BookMetadata()
        self.locations = locations or FakeLocations()
        self.fail_ready = fail_ready
        self.fail_display = fail_display
        self.gate = gate
        self.sticky_listeners = sticky_listeners
        self.first_href = first_href
        self.renditions: List[FakeRendition] = []
        self.destroyed = False

    async def ready(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)
        if self.fail_ready:
            raise ValueError("not an epub")

    async def load_metadata(self) -> BookMetadata:
        return self.metadata

    async def load_navigation(self):
        return self.toc

    def render_to(self, surface, flow="scrolled-doc", allow_scripted_content=False):
        rendition = FakeRendition(self, surface, flow, allow_scripted_content)
        self.renditions.append(rendition)
        return rendition

    def destroy(self) -> None:
        self.destroyed = True

class FakeLibrary:
    """Book opener whose books are configured per byte payload."""

    def __init__(self):
        self.configs: Dict[bytes, dict] = {}
        self.books: List[FakeBook] = []

    def configure(self, data: bytes, **options) -> None:
        self.configs[data] = options

    def open(self, data: bytes) -> FakeBook:
        book = FakeBook(data, **self.configs.get(data, {}))
        self.books.append(book)
        return book

    def live_handles(self) -> list:
        live = [book for book in self.books if not book.destroyed]
        live += [r for book in self.books for r in book.renditions if not r.destroyed]
        return live

SAMPLE_TOC = [
    NavNode(id="intro", href="chapters/intro_01.xhtml", label=" Introduction "),
    NavNode(id="part", href="chapters/part-one.xhtml", label="Part One", children=[
        NavNode(id="ch1", href="chapters/part-one.xhtml#ch1", label="Chapter One"),
        NavNode(id="ch2", href="chapters/chapter_two.xhtml", label="Chapter Two"),
    ]),
]

@pytest.fixture
def fake_library() -> FakeLibrary:
    return FakeLibrary()

@pytest.fixture
def sample_toc() -> List[NavNode]:
    return SAMPLE_TOC
