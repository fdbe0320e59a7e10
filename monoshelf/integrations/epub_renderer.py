"""
Rendering collaborator backed by ebooklib.

Opens an EPUB from raw bytes, exposes its metadata and navigation tree, and
renders one spine section at a time into a viewer surface, emitting
'rendered' and 'relocated' events the way a browser rendition would.
"""
import asyncio
import bisect
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote

import ebooklib
from ebooklib import epub
from bs4 import BeautifulSoup, Comment

from monoshelf.core.display import ViewerSurface
from monoshelf.core.label_index import strip_fragment
from monoshelf.core.models import BookMetadata, Location, LocationEdge, NavNode

logger = logging.getLogger(__name__)

FLOW_SCROLLED = "scrolled-doc"
EVENTS = ("rendered", "relocated")

CFI_PATTERN = re.compile(r'^epubcfi\(/6/(\d+)!/4/1:(\d+)\)$')

class EpubLoadError(RuntimeError):
    """The bytes could not be opened as an EPUB."""

@dataclass
class Section:
    """One document of the spine, ready to draw."""
    index: int
    href: str
    html: str
    text: str

def make_cfi(index: int, offset: int = 0) -> str:
    return f"epubcfi(/6/{(index + 1) * 2}!/4/1:{offset})"

def parse_cfi(cfi: str) -> Tuple[int, int]:
    """Returns (spine index, character offset) for a CFI built by make_cfi."""
    match = CFI_PATTERN.match(cfi.strip())
    if not match:
        raise ValueError(f"Unsupported CFI: {cfi}")
    step, offset = int(match.group(1)), int(match.group(2))
    return step // 2 - 1, offset

class Subscription:
    """Handle returned by EpubRendition.on(); cancel() detaches the callback."""

    def __init__(self, listeners: List[Callable[..., Any]], callback: Callable[..., Any]):
        self._listeners = listeners
        self._callback = callback
        self.active = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)

class LocationIndex:
    """Character-based position breaks across the whole spine."""

    def __init__(self, document: 'EpubDocument'):
        self._document = document
        self._breaks: List[Tuple[int, int]] = []

    async def generate(self, chars: int = 1400) -> None:
        if chars <= 0:
            raise ValueError("chars must be positive")
        sections = self._document.sections
        self._breaks = await asyncio.to_thread(self._compute, sections, chars)
        logger.info("Generated %d locations", len(self._breaks))

    @staticmethod
    def _compute(sections: List[Section], chars: int) -> List[Tuple[int, int]]:
        breaks = []
        for section in sections:
            for offset in range(0, len(section.text), chars):
                breaks.append((section.index, offset))
        return breaks

    def length(self) -> int:
        return len(self._breaks)

    def cfi_at(self, position: int) -> str:
        index, offset = self._breaks[position]
        return make_cfi(index, offset)

    def percentage_from_cfi(self, cfi: str) -> float:
        if not self._breaks:
            return 0.0
        key = parse_cfi(cfi)
        position = max(bisect.bisect_right(self._breaks, key) - 1, 0)
        total = len(self._breaks) - 1
        if total <= 0:
            return 0.0
        return min(position / total, 1.0)

    def clear(self) -> None:
        self._breaks = []

class EpubDocument:
    """
    Book handle. Construction is cheap; `await ready()` does the parsing and
    raises EpubLoadError for corrupt or unsupported input.
    """

    def __init__(self, data: bytes):
        self._data = data
        self._book = None
        self._sections: List[Section] = []
        self._metadata = BookMetadata()
        self._toc: List[NavNode] = []
        self._renditions: List['EpubRendition'] = []
        self.locations = LocationIndex(self)
        self.destroyed = False

    @property
    def sections(self) -> List[Section]:
        return self._sections

    async def ready(self) -> None:
        if self.destroyed:
            raise EpubLoadError("Book handle was destroyed")
        if self._book is not None:
            return
        book = await asyncio.to_thread(_read_epub_bytes, self._data)
        if self.destroyed:
            return
        self._book = book
        self._metadata = _extract_metadata(book)
        self._toc = _parse_toc_recursive(book.toc)
        self._sections = _extract_sections(book)
        self._data = b""
        if not self._sections:
            raise EpubLoadError("EPUB has no readable documents in its spine")

    async def load_metadata(self) -> BookMetadata:
        self._require_ready()
        return self._metadata

    async def load_navigation(self) -> List[NavNode]:
        self._require_ready()
        return list(self._toc)

    def render_to(self, surface: ViewerSurface, flow: str = FLOW_SCROLLED,
                  allow_scripted_content: bool = False) -> 'EpubRendition':
        self._require_ready()
        rendition = EpubRendition(self, surface, flow=flow, allow_scripted_content=allow_scripted_content)
        self._renditions.append(rendition)
        return rendition

    def find_section(self, href: str) -> Optional[Section]:
        target = unquote(strip_fragment(href)).lstrip('/')
        for section in self._sections:
            if section.href == target:
                return section
        basename = os.path.basename(target)
        for section in self._sections:
            if os.path.basename(section.href) == basename:
                return section
        return None

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        for rendition in self._renditions:
            rendition.destroy()
        self._renditions = []
        self.locations.clear()
        self._sections = []
        self._toc = []
        self._book = None
        self._data = b""

    def _require_ready(self) -> None:
        if self.destroyed:
            raise RuntimeError("Book handle was destroyed")
        if self._book is None:
            raise RuntimeError("Book is not ready yet")

class EpubRendition:
    """Draws one spine section at a time into a viewer surface."""

    def __init__(self, document: EpubDocument, surface: ViewerSurface,
                 flow: str = FLOW_SCROLLED, allow_scripted_content: bool = False):
        self._document = document
        self._surface = surface
        self.flow = flow
        self.allow_scripted_content = allow_scripted_content
        self._listeners: Dict[str, List[Callable[..., Any]]] = {name: [] for name in EVENTS}
        self._stylesheet = ""
        self._index: Optional[int] = None
        self._lock = asyncio.Lock()
        self.destroyed = False

    @property
    def current_index(self) -> Optional[int]:
        return self._index

    def on(self, event_name: str, callback: Callable[..., Any]) -> Subscription:
        if event_name not in self._listeners:
            raise ValueError(f"Unknown rendition event: {event_name}")
        listeners = self._listeners[event_name]
        listeners.append(callback)
        return Subscription(listeners, callback)

    def apply_style(self, rules: Dict[str, Dict[str, str]]) -> None:
        self._stylesheet = " ".join(
            f"{selector} {{ " + " ".join(f"{prop}: {value};" for prop, value in props.items()) + " }"
            for selector, props in rules.items()
        )

    async def display(self, target: Optional[str] = None) -> None:
        async with self._lock:
            self._require_live()
            index, offset = self._resolve(target)
            self._show(index, offset)

    async def next(self) -> None:
        async with self._lock:
            self._require_live()
            if self._index is None:
                self._show(0)
            elif self._index < len(self._document.sections) - 1:
                self._show(self._index + 1)

    async def prev(self) -> None:
        async with self._lock:
            self._require_live()
            if self._index is None:
                self._show(0)
            elif self._index > 0:
                self._show(self._index - 1)

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        for listeners in self._listeners.values():
            listeners.clear()
        self._surface.clear()
        self._index = None

    def _resolve(self, target: Optional[str]) -> Tuple[int, int]:
        if target is None or target == "":
            return 0, 0
        if target.startswith("epubcfi("):
            index, offset = parse_cfi(target)
            if not 0 <= index < len(self._document.sections):
                raise ValueError(f"CFI points outside the spine: {target}")
            return index, offset
        section = self._document.find_section(target)
        if section is None:
            raise ValueError(f"No section matches {target}")
        return section.index, 0

    def _show(self, index: int, offset: int = 0) -> None:
        section = self._document.sections[index]
        html = section.html if self.allow_scripted_content else _strip_scripts(section.html)
        self._index = index
        self._surface.render(html, self._stylesheet, section_href=section.href)
        self._emit("rendered", section.href)
        offset = min(offset, max(len(section.text) - 1, 0))
        self._emit("relocated", Location(
            start=LocationEdge(cfi=make_cfi(index, offset), href=section.href),
            end=LocationEdge(cfi=make_cfi(index, len(section.text)), href=section.href),
        ))

    def _emit(self, event_name: str, payload: Any) -> None:
        for callback in list(self._listeners[event_name]):
            try:
                callback(payload)
            except Exception:
                logger.error("Rendition listener for %r failed", event_name, exc_info=True)

    def _require_live(self) -> None:
        if self.destroyed:
            raise RuntimeError("Rendition was destroyed")

# --- Internal Helpers ---

def _read_epub_bytes(data: bytes):
    if not data:
        raise EpubLoadError("File is empty")
    fd, path = tempfile.mkstemp(suffix=".epub")
    try:
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
        return epub.read_epub(path)
    except EpubLoadError:
        raise
    except Exception as e:
        raise EpubLoadError(f"Failed to read EPUB file: {e}") from e
    finally:
        os.remove(path)

def _extract_metadata(book_obj) -> BookMetadata:
    def get_one(key):
        data = book_obj.get_metadata('DC', key)
        return data[0][0] if data else None

    return BookMetadata(title=get_one('title'), creator=get_one('creator'))

def _extract_sections(book) -> List[Section]:
    sections = []
    for item_id, _ in book.spine:
        item = book.get_item_with_id(item_id)
        if not item or item.get_type() != ebooklib.ITEM_DOCUMENT:
            continue

        raw_content = item.get_content().decode('utf-8', errors='ignore')
        soup = BeautifulSoup(raw_content, 'html.parser')
        for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
            comment.extract()

        body = soup.find('body')
        html = "".join(str(x) for x in body.contents) if body else str(soup)
        text_root = body if body else soup
        for tag in text_root(['script', 'style']):
            tag.decompose()

        sections.append(Section(
            index=len(sections),
            href=item.get_name(),
            html=html,
            text=text_root.get_text(separator=' ').strip(),
        ))
    return sections

def _strip_scripts(html: str) -> str:
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'iframe', 'object', 'embed']):
        tag.decompose()
    for tag in soup.find_all(True):
        for attr in [name for name in tag.attrs if name.lower().startswith('on')]:
            del tag[attr]
        href = tag.get('href')
        if isinstance(href, str) and href.strip().lower().startswith('javascript:'):
            del tag['href']
    return str(soup)

def _parse_toc_recursive(toc_list, prefix: str = "nav") -> List[NavNode]:
    result = []
    for position, item in enumerate(toc_list):
        node_id = f"{prefix}-{position}"
        if isinstance(item, tuple):
            section, children = item
            result.append(NavNode(
                id=getattr(section, 'uid', None) or node_id,
                href=section.href or "",
                label=section.title or "",
                children=_parse_toc_recursive(children, node_id),
            ))
        elif isinstance(item, (epub.Link, epub.Section)):
            result.append(NavNode(
                id=getattr(item, 'uid', None) or node_id,
                href=item.href or "",
                label=item.title or "",
            ))
        elif isinstance(item, epub.EpubHtml):
            result.append(NavNode(
                id=item.get_id() or node_id,
                href=item.get_name(),
                label=item.title or "",
            ))
    return result
