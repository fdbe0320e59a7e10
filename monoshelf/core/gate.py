"""
Auth gate in front of the reading session.

Every entry point that opens or moves through a book first checks for a
cached session. The cached token is trusted as-is; expiry is only detected
by the background revalidation started from restore().
"""
import asyncio
import logging
from typing import Optional, Sequence

from monoshelf.core.display import META_EMPTY, ReaderDisplay, STATUS_IDLE, STATUS_LOGIN_REQUIRED
from monoshelf.core.files import BookFile, pick_epub
from monoshelf.core.models import AuthUser, SessionPayload
from monoshelf.core.session import SessionController
from monoshelf.core.session_store import SessionStore
from monoshelf.integrations.auth_client import AuthError, RemoteAuthClient

logger = logging.getLogger(__name__)

PREV_KEYS = ('ArrowLeft', 'ArrowUp', 'PageUp')
NEXT_KEYS = ('ArrowRight', 'ArrowDown', 'PageDown', ' ')

SESSION_EXPIRED_MESSAGE = "session expired, sign in again"

class AuthGate:
    def __init__(self, controller: SessionController, client: RemoteAuthClient,
                 store: SessionStore, display: Optional[ReaderDisplay] = None):
        self.controller = controller
        self.client = client
        self.store = store
        self.display = display or controller.display
        self.auth_message = ""
        self.auth_status: Optional[int] = None
        self._payload: Optional[SessionPayload] = None
        self._revalidation: Optional[asyncio.Task] = None

    @property
    def signed_in(self) -> bool:
        return self._payload is not None

    @property
    def user(self) -> Optional[AuthUser]:
        return self._payload.user if self._payload else None

    @property
    def token(self) -> Optional[str]:
        return self._payload.token if self._payload else None

    # --- Gated reading actions ---

    def _refused(self) -> bool:
        if self._payload is not None:
            return False
        self.display.set_status(STATUS_LOGIN_REQUIRED)
        return True

    async def open_book(self, file: BookFile) -> bool:
        if self._refused():
            return False
        return await self.controller.open_book(file)

    async def drop_files(self, files: Sequence[BookFile]) -> bool:
        """Opens the first .epub among dropped or selected files."""
        if self._refused():
            return False
        match = pick_epub(files)
        if match is None:
            return False
        return await self.controller.open_book(match)

    async def prev(self) -> bool:
        if self._refused():
            return False
        await self.controller.prev()
        return True

    async def next(self) -> bool:
        if self._refused():
            return False
        await self.controller.next()
        return True

    async def jump_to(self, href: str) -> bool:
        if self._refused():
            return False
        await self.controller.jump_to(href)
        return True

    async def handle_key(self, key: str) -> bool:
        """Keyboard navigation; ignored unless a book is open."""
        if not self.controller.is_open:
            return False
        if key in PREV_KEYS:
            return await self.prev()
        if key in NEXT_KEYS:
            return await self.next()
        return False

    # --- Account actions ---

    async def register(self, display_name: str, email: str, password: str) -> Optional[AuthUser]:
        try:
            payload = await self.client.register(display_name, email, password)
        except AuthError as e:
            self.auth_message = e.message
            self.auth_status = e.status
            return None
        self._apply(payload)
        return payload.user

    async def login(self, email: str, password: str) -> Optional[AuthUser]:
        try:
            payload = await self.client.login(email, password)
        except AuthError as e:
            self.auth_message = e.message
            self.auth_status = e.status
            return None
        self._apply(payload)
        return payload.user

    def logout(self) -> None:
        self._cancel_revalidation()
        self._clear_session()
        self.auth_message = ""
        self.auth_status = None
        self.controller.reset()
        self.display.set_meta(META_EMPTY)
        self.display.set_status(STATUS_IDLE)

    async def restore(self) -> bool:
        """
        Applies a cached session immediately and revalidates it in the background.
        Returns True when a cached session was found.
        """
        payload = self.store.load()
        if payload is None:
            return False
        self._payload = payload
        self.client.token = payload.token
        self._cancel_revalidation()
        self._revalidation = asyncio.create_task(self.revalidate())
        return True

    async def revalidate(self) -> bool:
        payload = self._payload
        if payload is None:
            return False
        try:
            user = await self.client.fetch_current_user(payload.token)
        except AuthError as e:
            logger.warning("Cached session rejected: %s", e.message)
            # A login that happened meanwhile owns the cache now
            if self._payload is payload:
                self._clear_session()
                self.auth_message = SESSION_EXPIRED_MESSAGE
            return False
        if self._payload is payload:
            self._payload = SessionPayload(token=payload.token, user=user)
            self.store.save(self._payload)
        return True

    def close(self) -> None:
        """Stops background revalidation; called before the client is closed."""
        self._cancel_revalidation()

    async def wait_for_revalidation(self) -> Optional[bool]:
        if self._revalidation is None:
            return None
        try:
            return await self._revalidation
        except asyncio.CancelledError:
            return None

    # --- Internal ---

    def _apply(self, payload: SessionPayload) -> None:
        self._payload = payload
        self.client.token = payload.token
        self.store.save(payload)
        self.auth_message = ""
        self.auth_status = None

    def _clear_session(self) -> None:
        self._payload = None
        self.client.token = None
        self.store.clear()

    def _cancel_revalidation(self) -> None:
        if self._revalidation is not None and not self._revalidation.done():
            self._revalidation.cancel()
        self._revalidation = None
