import asyncio

import pytest
from fastapi.testclient import TestClient

from monoshelf.config import Settings
from monoshelf.core.display import STATUS_LOGIN_REQUIRED, STATUS_READY
from monoshelf.core.models import AuthUser, SessionPayload
from monoshelf.core.session_store import SessionStore
from monoshelf.integrations.auth_client import NETWORK_ERROR_MESSAGE, AuthError
from monoshelf.server import create_app

USER = AuthUser(id="u-1", email="a@b.com", display_name="ab", created_at="2024-01-01T00:00:00+00:00")


class StubClient:
    def __init__(self, hold_revalidation=False):
        self.token = None
        self.closed = False
        self.hold_revalidation = hold_revalidation
        self.fetching = False
        self.fetching_at_close = None

    async def register(self, display_name, email, password):
        if email == "taken@b.com":
            raise AuthError("Account already exists for that email", status=409)
        if len(password) < 8:
            raise AuthError("Password must be at least 8 characters long", status=400)
        return SessionPayload(token="tok", user=USER)

    async def login(self, email, password):
        if email == "offline@b.com":
            raise AuthError(NETWORK_ERROR_MESSAGE)
        if password != "password1":
            raise AuthError("Invalid credentials", status=401)
        return SessionPayload(token="tok", user=USER)

    async def fetch_current_user(self, token=None):
        if self.hold_revalidation:
            self.fetching = True
            try:
                await asyncio.Event().wait()
            finally:
                self.fetching = False
        return USER

    async def aclose(self):
        await asyncio.sleep(0)
        self.fetching_at_close = self.fetching
        self.closed = True


@pytest.fixture
def stub_client() -> StubClient:
    return StubClient()


@pytest.fixture
def client(tmp_path, fake_library, sample_toc, stub_client):
    fake_library.configure(b"book-bytes", toc=sample_toc)
    settings = Settings(session_file=tmp_path / "session.json")
    app = create_app(settings, client=stub_client, open_book_handle=fake_library.open)
    with TestClient(app) as test_client:
        yield test_client


def _upload(client, *names):
    files = [("files", (name, b"book-bytes", "application/epub+zip")) for name in names]
    return client.post("/api/books/open", files=files)


def test_index_renders(client) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert "no book loaded" in response.text


def test_initial_state(client) -> None:
    state = client.get("/api/state").json()
    assert state["status"] == "idle"
    assert state["meta"] == "no book loaded"
    assert state["label"] == "idle"
    assert state["signed_in"] is False
    assert state["user"] is None


def test_open_requires_sign_in(client, fake_library) -> None:
    response = _upload(client, "sample.epub")
    assert response.status_code == 200
    assert response.json()["opened"] is False
    assert response.json()["status"] == STATUS_LOGIN_REQUIRED
    assert fake_library.books == []


def test_login_failure_reports_message(client) -> None:
    response = client.post("/api/session/login", json={"email": "a@b.com", "password": "nope"})
    assert response.status_code == 401
    assert response.json()["auth_message"] == "Invalid credentials"
    assert response.json()["signed_in"] is False


def test_register_failure_is_bad_request(client) -> None:
    response = client.post("/api/session/register",
                           json={"displayName": "ab", "email": "a@b.com", "password": "short"})
    assert response.status_code == 400
    assert response.json()["auth_message"] == "Password must be at least 8 characters long"


def test_read_after_login(client, fake_library) -> None:
    login = client.post("/api/session/login", json={"email": "a@b.com", "password": "password1"})
    assert login.status_code == 200
    assert login.json()["user"]["displayName"] == "ab"

    opened = _upload(client, "cover.jpg", "sample.epub").json()
    assert opened["opened"] is True
    assert opened["status"] == STATUS_READY
    assert opened["meta"] == "sample"
    assert [entry["label"] for entry in opened["toc"]][:2] == ["Introduction", "Part One"]
    assert fake_library.books[0].data == b"book-bytes"

    moved = client.post("/api/reader/goto", json={"href": "chapters/chapter_two.xhtml"}).json()
    assert moved["label"] == "Chapter Two"
    assert moved["section"] == "chapters/chapter_two.xhtml"

    client.post("/api/reader/key", json={"key": "ArrowRight"})
    client.post("/api/reader/prev")
    assert fake_library.books[0].renditions[0].steps == ["next", "prev"]

    viewer = client.get("/api/viewer")
    assert "chapters/chapter_two.xhtml" in viewer.text


def test_logout_closes_book(client, fake_library) -> None:
    client.post("/api/session/login", json={"email": "a@b.com", "password": "password1"})
    _upload(client, "sample.epub")
    state = client.post("/api/session/logout").json()

    assert state["signed_in"] is False
    assert state["meta"] == "no book loaded"
    assert state["status"] == "idle"
    assert fake_library.live_handles() == []


def test_shutdown_closes_client(tmp_path, fake_library, stub_client) -> None:
    app = create_app(Settings(session_file=tmp_path / "session.json"), client=stub_client,
                     open_book_handle=fake_library.open)
    with TestClient(app):
        pass
    assert stub_client.closed


def test_auth_failures_keep_service_status(client) -> None:
    duplicate = client.post("/api/session/register",
                            json={"displayName": "ab", "email": "taken@b.com", "password": "password1"})
    assert duplicate.status_code == 409
    assert duplicate.json()["auth_message"] == "Account already exists for that email"

    offline = client.post("/api/session/login", json={"email": "offline@b.com", "password": "password1"})
    assert offline.status_code == 502
    assert offline.json()["auth_message"] == NETWORK_ERROR_MESSAGE

    ok = client.post("/api/session/login", json={"email": "a@b.com", "password": "password1"})
    assert ok.status_code == 200
    assert client.app.state.reader.gate.auth_status is None


def test_shutdown_stops_pending_revalidation(tmp_path, fake_library) -> None:
    session_file = tmp_path / "session.json"
    SessionStore(session_file).save(SessionPayload(token="cached", user=USER))
    stub = StubClient(hold_revalidation=True)
    app = create_app(Settings(session_file=session_file), client=stub, open_book_handle=fake_library.open)

    with TestClient(app) as test_client:
        state = test_client.get("/api/state").json()
        assert state["signed_in"] is True

    assert stub.closed
    assert stub.fetching_at_close is False
    assert app.state.reader.gate.signed_in
