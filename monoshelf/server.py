import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel

from monoshelf.config import Settings
from monoshelf.core.display import ReaderDisplay
from monoshelf.core.files import MemoryBookFile
from monoshelf.core.gate import AuthGate
from monoshelf.core.session import BookOpener, SessionController
from monoshelf.core.session_store import SessionStore
from monoshelf.integrations.auth_client import RemoteAuthClient
from monoshelf.utils.paths import get_templates_dir

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=str(get_templates_dir()))

class ReaderState:
    """The single reading surface served by this process."""

    def __init__(self, settings: Settings, client: Optional[RemoteAuthClient] = None,
                 open_book_handle: Optional[BookOpener] = None):
        self.display = ReaderDisplay()
        self.controller = SessionController(self.display, open_book_handle=open_book_handle)
        self.client = client or RemoteAuthClient(settings.auth_api_url)
        self.gate = AuthGate(self.controller, self.client, SessionStore(settings.session_file), self.display)

    def snapshot(self) -> dict:
        data = self.display.snapshot()
        user = self.gate.user
        data.update({
            "label": self.controller.current_label,
            "phase": self.controller.phase.value,
            "signed_in": self.gate.signed_in,
            "user": user.to_dict() if user else None,
            "auth_message": self.gate.auth_message,
        })
        return data

def _failure_status(status: Optional[int]) -> int:
    """Status the auth service answered with; 502 when it could not be reached."""
    if status is None or status < 400:
        return 502
    return status

class RegisterForm(BaseModel):
    displayName: str
    email: str
    password: str

class LoginForm(BaseModel):
    email: str
    password: str

class GotoRequest(BaseModel):
    href: str

class KeyRequest(BaseModel):
    key: str

def create_app(settings: Optional[Settings] = None, client: Optional[RemoteAuthClient] = None,
               open_book_handle: Optional[BookOpener] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    state = ReaderState(settings, client=client, open_book_handle=open_book_handle)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if await state.gate.restore():
            logger.info("Restored cached session for %s", state.gate.user.email)
        yield
        state.gate.close()
        state.controller.reset()
        await state.client.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.reader = state

    @app.get("/", response_class=HTMLResponse)
    async def reader_view(request: Request):
        """The reader page."""
        return templates.TemplateResponse(request, "reader.html", {"state": state.snapshot()})

    @app.get("/api/state")
    async def get_state():
        return JSONResponse(state.snapshot())

    @app.get("/api/viewer", response_class=HTMLResponse)
    async def get_viewer():
        """Current section markup, with the theme stylesheet."""
        return HTMLResponse(state.display.viewer.to_html())

    @app.post("/api/session/register")
    async def register(form: RegisterForm):
        user = await state.gate.register(form.displayName, form.email, form.password)
        status_code = 201 if user else _failure_status(state.gate.auth_status)
        return JSONResponse(state.snapshot(), status_code=status_code)

    @app.post("/api/session/login")
    async def login(form: LoginForm):
        user = await state.gate.login(form.email, form.password)
        status_code = 200 if user else _failure_status(state.gate.auth_status)
        return JSONResponse(state.snapshot(), status_code=status_code)

    @app.post("/api/session/logout")
    async def logout():
        state.gate.logout()
        return JSONResponse(state.snapshot())

    @app.post("/api/books/open")
    async def open_book(files: List[UploadFile] = File(...)):
        """Accepts one or more files; the first .epub among them is opened."""
        candidates = []
        for upload in files:
            data = await upload.read()
            candidates.append(MemoryBookFile(upload.filename or "book.epub", data))
        opened = await state.gate.drop_files(candidates)
        return JSONResponse({"opened": opened, **state.snapshot()})

    @app.post("/api/reader/prev")
    async def prev():
        await state.gate.prev()
        return JSONResponse(state.snapshot())

    @app.post("/api/reader/next")
    async def next_section():
        await state.gate.next()
        return JSONResponse(state.snapshot())

    @app.post("/api/reader/goto")
    async def goto(request: GotoRequest):
        try:
            await state.gate.jump_to(request.href)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        return JSONResponse(state.snapshot())

    @app.post("/api/reader/key")
    async def key(request: KeyRequest):
        await state.gate.handle_key(request.key)
        return JSONResponse(state.snapshot())

    return app
