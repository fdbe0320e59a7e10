"""
Display surfaces shared by the reading session: the status line, the meta
line, the navigation panel and the viewer. Only the live book session writes
to them.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from monoshelf.core.label_index import walk_toc
from monoshelf.core.models import NavNode

STATUS_IDLE = "idle"
STATUS_LOADING = "loading epub..."
STATUS_READY = "ready for navigation"
STATUS_FAILED = "unable to load book"
STATUS_LOGIN_REQUIRED = "login required: sign in first"

META_EMPTY = "no book loaded"
TOC_PLACEHOLDER = "continuous scroll / no markers yet"

@dataclass
class TocLink:
    """A rendered navigation entry. Activating it displays `href` directly."""
    label: str
    href: str
    depth: int

@dataclass
class ViewerSurface:
    """The element a rendition draws into."""
    html: str = ""
    stylesheet: str = ""
    section_href: Optional[str] = None

    def render(self, html: str, stylesheet: str = "", section_href: Optional[str] = None) -> None:
        self.html = html
        self.stylesheet = stylesheet
        self.section_href = section_href

    def clear(self) -> None:
        self.html = ""
        self.stylesheet = ""
        self.section_href = None

    def to_html(self) -> str:
        if not self.stylesheet:
            return self.html
        return f"<style>{self.stylesheet}</style>{self.html}"

@dataclass
class ReaderDisplay:
    status: str = STATUS_IDLE
    meta: str = META_EMPTY
    toc: List[TocLink] = field(default_factory=list)
    toc_placeholder: Optional[str] = None
    viewer: ViewerSurface = field(default_factory=ViewerSurface)

    def set_status(self, text: str) -> None:
        self.status = text

    def set_meta(self, title: str, author: Optional[str] = None) -> None:
        if author and author.strip():
            self.meta = f"{title} / {author}"
        else:
            self.meta = title

    def render_toc(self, nodes: Sequence[NavNode]) -> None:
        if not nodes:
            self.toc = []
            self.toc_placeholder = TOC_PLACEHOLDER
            return
        self.toc = [TocLink(label=node.label.strip(), href=node.href, depth=depth)
                    for node, depth in walk_toc(nodes)]
        self.toc_placeholder = None

    def clear_reading(self) -> None:
        """Empties the navigation panel and the viewer."""
        self.toc = []
        self.toc_placeholder = None
        self.viewer.clear()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "meta": self.meta,
            "toc": [{"label": link.label, "href": link.href, "depth": link.depth} for link in self.toc],
            "toc_placeholder": self.toc_placeholder,
            "section": self.viewer.section_href,
        }
