"""
Reading-session state machine.

One SessionController owns at most one live BookSession. Opening a book
always tears the previous session down first; every asynchronous step of a
load checks that its session is still the live one before touching the
display, so a superseded load can never overwrite a newer one.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from monoshelf.core.display import (ReaderDisplay, STATUS_FAILED, STATUS_IDLE, STATUS_LOADING, STATUS_READY,
                                    ViewerSurface)
from monoshelf.core.files import BookFile
from monoshelf.core.label_index import LabelIndex, humanize, strip_fragment
from monoshelf.core.models import BookMetadata, Location, NavNode
from monoshelf.core.progress import format_progress, percent

logger = logging.getLogger(__name__)

IDLE_LABEL = "idle"
FALLBACK_LABEL = "reading"
LOCATION_CHARS = 1400
FLOW = "scrolled-doc"

THEME = {
    'body': {
        'background': '#050505',
        'color': '#f7f7f3',
        'font-family': '"IBM Plex Mono", "SFMono-Regular", monospace',
        'font-size': '1rem',
        'line-height': '1.7',
        'letter-spacing': '0.01em',
    },
    'p': {'margin-bottom': '1.2rem'},
    'a': {'color': '#a6c8ff'},
    'img': {'max-width': '100%'},
}

class Subscription(Protocol):
    def cancel(self) -> None: ...

class LocationIndexHandle(Protocol):
    async def generate(self, chars: int) -> None: ...

    def length(self) -> int: ...

    def percentage_from_cfi(self, cfi: str) -> float: ...

class RenditionHandle(Protocol):
    def on(self, event_name: str, callback: Callable[..., Any]) -> Subscription: ...

    def apply_style(self, rules: Dict[str, Dict[str, str]]) -> None: ...

    async def display(self, target: Optional[str] = None) -> None: ...

    async def next(self) -> None: ...

    async def prev(self) -> None: ...

    def destroy(self) -> None: ...

class BookHandle(Protocol):
    locations: LocationIndexHandle

    async def ready(self) -> None: ...

    async def load_metadata(self) -> BookMetadata: ...

    async def load_navigation(self) -> List[NavNode]: ...

    def render_to(self, surface: ViewerSurface, flow: str = FLOW,
                  allow_scripted_content: bool = False) -> RenditionHandle: ...

    def destroy(self) -> None: ...

BookOpener = Callable[[bytes], BookHandle]

class SessionPhase(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"

class SupersededLoad(Exception):
    """A newer open or a reset replaced the session this load belongs to."""

@dataclass
class BookSession:
    """Everything owned by one opened book. release() is idempotent."""
    generation: int
    filename: str
    book: Optional[BookHandle] = None
    rendition: Optional[RenditionHandle] = None
    subscriptions: List[Subscription] = field(default_factory=list)
    labels: LabelIndex = field(default_factory=LabelIndex)
    current_href: Optional[str] = None
    current_label: str = IDLE_LABEL
    locations_ready: bool = False
    location_task: Optional[asyncio.Task] = None
    released: bool = False

    @property
    def has_live_handles(self) -> bool:
        return self.book is not None or self.rendition is not None

    def release(self) -> None:
        for subscription in self.subscriptions:
            subscription.cancel()
        self.subscriptions = []

        if self.location_task is not None and not self.location_task.done():
            self.location_task.cancel()
        self.location_task = None

        if self.rendition is not None:
            rendition, self.rendition = self.rendition, None
            rendition.destroy()

        if self.book is not None:
            book, self.book = self.book, None
            book.destroy()

        self.labels = LabelIndex()
        self.current_href = None
        self.current_label = IDLE_LABEL
        self.locations_ready = False
        self.released = True

def _default_opener(data: bytes) -> BookHandle:
    from monoshelf.integrations.epub_renderer import EpubDocument
    return EpubDocument(data)

class SessionController:
    """Owns the lifecycle of the one open book."""

    def __init__(self, display: ReaderDisplay, open_book_handle: Optional[BookOpener] = None,
                 location_chars: int = LOCATION_CHARS):
        self.display = display
        self._open_book_handle = open_book_handle or _default_opener
        self._location_chars = location_chars
        self._generation = 0
        self._session: Optional[BookSession] = None
        self.phase = SessionPhase.IDLE
        self.last_error: Optional[BaseException] = None

    # --- State ---

    @property
    def session(self) -> Optional[BookSession]:
        return self._session

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_open(self) -> bool:
        return self._session is not None and self._session.rendition is not None

    @property
    def current_label(self) -> str:
        return self._session.current_label if self._session else IDLE_LABEL

    @property
    def current_href(self) -> Optional[str]:
        return self._session.current_href if self._session else None

    @property
    def locations_ready(self) -> bool:
        return bool(self._session and self._session.locations_ready)

    # --- Lifecycle ---

    def reset(self) -> None:
        """Tears down the live session. Synchronous and safe on empty state."""
        session, self._session = self._session, None
        if session is not None:
            session.release()
        self.display.clear_reading()
        self.phase = SessionPhase.IDLE

    async def open_book(self, file: BookFile) -> bool:
        """
        Opens `file` as the new live session.
        Returns True once the book is ready, False if the load failed or was superseded.
        """
        # 1. Teardown, then claim a new generation
        self.reset()
        self._generation += 1
        session = BookSession(generation=self._generation, filename=file.name)
        self._session = session
        self.phase = SessionPhase.LOADING
        self.last_error = None

        # 2. Provisional title and status
        self.display.set_meta(file.name)
        self.display.set_status(STATUS_LOADING)

        try:
            # 3. Read the bytes
            data = await file.read_bytes()
            self._ensure_current(session)

            # 4. Book handle; stored on the session at once so teardown can reach it
            session.book = self._open_book_handle(data)
            await session.book.ready()
            self._ensure_current(session)

            # 5. Rendition bound to the viewer, scripts never run
            session.rendition = session.book.render_to(
                self.display.viewer, flow=FLOW, allow_scripted_content=False)

            # 6. Theme
            session.rendition.apply_style(THEME)

            # 7. Events
            session.subscriptions.append(
                session.rendition.on("rendered", self._guarded(session, self._on_rendered)))
            session.subscriptions.append(
                session.rendition.on("relocated", self._guarded(session, self._on_relocated)))

            # 8. Navigation
            toc = await session.book.load_navigation()
            self._ensure_current(session)
            session.labels = LabelIndex.build(toc or [])
            self.display.render_toc(toc or [])

            # 9. Initial position
            await session.rendition.display()
            self._ensure_current(session)

            # 10. Metadata
            metadata = await session.book.load_metadata()
            self._ensure_current(session)
            title = (metadata.title or "").strip() or humanize(file.name)
            author = (metadata.creator or "").strip() or None
            self.display.set_meta(title, author)
        except SupersededLoad:
            logger.info("Load of %s was superseded", file.name)
            session.release()
            return False
        except asyncio.CancelledError:
            logger.info("Load of %s was cancelled", file.name)
            if session is self._session:
                self.reset()
                self.display.set_status(STATUS_IDLE)
            else:
                session.release()
            raise
        except Exception as e:
            logger.exception("Unable to load %s", file.name)
            session.release()
            if session is self._session:
                self.phase = SessionPhase.ERROR
                self.last_error = e
                self.reset()
                self.display.set_status(STATUS_FAILED)
            return False

        # 11. Location index in the background
        session.location_task = asyncio.create_task(self._build_locations(session))

        # 12. Ready
        self.phase = SessionPhase.READY
        self.display.set_status(STATUS_READY)
        return True

    async def wait_for_locations(self) -> bool:
        """Waits for the background location index of the live session."""
        session = self._session
        if session is None or session.location_task is None:
            return False
        try:
            await session.location_task
        except asyncio.CancelledError:
            return False
        return session.locations_ready

    # --- Navigation ---

    async def prev(self) -> None:
        rendition = self._session.rendition if self._session else None
        if rendition is not None:
            await rendition.prev()

    async def next(self) -> None:
        rendition = self._session.rendition if self._session else None
        if rendition is not None:
            await rendition.next()

    async def jump_to(self, href: str) -> None:
        """Displays a TOC entry directly, bypassing forward/back stepping."""
        rendition = self._session.rendition if self._session else None
        if rendition is not None:
            await rendition.display(href)

    # --- Internal ---

    def _ensure_current(self, session: BookSession) -> None:
        if session is not self._session:
            raise SupersededLoad()

    def _guarded(self, session: BookSession, handler: Callable[[BookSession, Any], None]) -> Callable[[Any], None]:
        def callback(payload: Any) -> None:
            if session is not self._session:
                return
            handler(session, payload)
        return callback

    def _on_rendered(self, session: BookSession, href: str) -> None:
        normalized = strip_fragment(href)
        session.current_href = normalized
        session.current_label = session.labels.label_for(normalized)
        self.display.set_status(session.current_label)

    def _on_relocated(self, session: BookSession, location: Location) -> None:
        locations = session.book.locations if session.locations_ready and session.book else None
        pct = percent(location, locations)
        label = session.current_label or FALLBACK_LABEL
        self.display.set_status(format_progress(label, pct))

    async def _build_locations(self, session: BookSession) -> None:
        book = session.book
        if book is None:
            return
        try:
            await book.locations.generate(self._location_chars)
        except Exception as e:
            logger.warning("Locations unavailable for %s: %s", session.filename, e)
            return
        if session is self._session and session.book is book:
            session.locations_ready = book.locations.length() > 0
