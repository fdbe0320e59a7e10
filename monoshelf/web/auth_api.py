import logging
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException

from monoshelf.config import Settings
from monoshelf.core.accounts import AccountError, AccountRepository

logger = logging.getLogger(__name__)

class RegisterBody(BaseModel):
    displayName: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

class LoginBody(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None

def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization") or ""
    if not header.startswith("Bearer "):
        raise AccountError(401, "Missing authorization header")
    return header[len("Bearer "):]

def create_auth_app(settings: Settings) -> FastAPI:
    """Builds the auth service: register, login, and the current-user lookup."""
    accounts = AccountRepository(
        settings.database_path,
        secret=settings.require_secret(),
        token_ttl=timedelta(hours=settings.token_ttl_hours),
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    accounts.initialize()

    app = FastAPI(title="Mono Shelf auth")
    app.state.accounts = accounts
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.client_origins or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AccountError)
    async def account_error_handler(request: Request, exc: AccountError):
        return JSONResponse({"message": exc.message}, status_code=exc.status)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return JSONResponse({"message": str(exc.detail)}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse({"message": "Request body must be a JSON object"}, status_code=400)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error on %s", request.url.path, exc_info=exc)
        return JSONResponse({"message": "Unexpected server error"}, status_code=500)

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.post("/api/auth/register", status_code=201)
    def register(body: RegisterBody):
        user = accounts.register(body.displayName, body.email, body.password)
        return {"user": user.to_dict(), "token": accounts.create_token(user)}

    @app.post("/api/auth/login")
    def login(body: LoginBody):
        user = accounts.authenticate(body.email, body.password)
        return {"user": user.to_dict(), "token": accounts.create_token(user)}

    @app.get("/api/auth/me")
    def me(request: Request):
        claims = accounts.verify_token(_bearer_token(request))
        user = accounts.get_user(str(claims.get("sub")))
        return {"user": user.to_dict()}

    return app
