"""
Client for the Mono Shelf auth service.

Each operation is a single JSON request/response. A held token is sent as
`Authorization: Bearer <token>` on every request.
"""
import logging
from typing import Any, Dict, Optional

import httpx

from monoshelf.core.models import AuthUser, SessionPayload

logger = logging.getLogger(__name__)

NETWORK_ERROR_MESSAGE = "Unable to reach auth service"

class AuthError(Exception):
    """A failed auth request. `status` is None for transport failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status

class RemoteAuthClient:
    def __init__(self, base_url: str, token: Optional[str] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._client = httpx.AsyncClient(base_url=self.base_url, transport=transport, timeout=timeout)

    async def register(self, display_name: str, email: str, password: str) -> SessionPayload:
        data = await self._request("POST", "/api/auth/register", json={
            "displayName": display_name,
            "email": email,
            "password": password,
        })
        return self._payload(data)

    async def login(self, email: str, password: str) -> SessionPayload:
        data = await self._request("POST", "/api/auth/login", json={
            "email": email,
            "password": password,
        })
        return self._payload(data)

    async def fetch_current_user(self, token: Optional[str] = None) -> AuthUser:
        data = await self._request("GET", "/api/auth/me", token=token)
        try:
            return AuthUser.from_dict(data["user"])
        except (KeyError, TypeError) as e:
            raise AuthError("Malformed response from auth service") from e

    async def health(self) -> bool:
        try:
            data = await self._request("GET", "/health")
        except AuthError:
            return False
        return bool(data.get("ok"))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> 'RemoteAuthClient':
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None,
                       token: Optional[str] = None) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        bearer = token or self.token
        if bearer:
            headers["Authorization"] = f"Bearer {bearer}"

        try:
            response = await self._client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise AuthError(NETWORK_ERROR_MESSAGE) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.is_success:
            message = data.get("message") if isinstance(data, dict) else None
            if not isinstance(message, str) or not message:
                message = f"Request failed ({response.status_code})"
            raise AuthError(message, status=response.status_code)

        if not isinstance(data, dict):
            raise AuthError("Malformed response from auth service", status=response.status_code)
        return data

    @staticmethod
    def _payload(data: Dict[str, Any]) -> SessionPayload:
        try:
            return SessionPayload.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise AuthError("Malformed response from auth service") from e
