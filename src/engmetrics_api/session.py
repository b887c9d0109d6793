"""Browser-session authentication state for the dashboard.

``AuthController`` is driven by the dashboard host: it restores a cached
credential on startup, completes the OAuth redirect when the page URL carries
an authorization code, and logs out. The credential lives in an injected
``CredentialStore`` and is always written as one whole record.
"""

from __future__ import annotations

import enum
import json
import logging
from typing import Dict, Optional, Protocol
from urllib.parse import parse_qs, urlsplit, urlunsplit

import httpx

from .errors import ServiceError
from .schemas import AuthUser, Credential

log = logging.getLogger(__name__)

STORAGE_KEY = "github-analytics-auth"
LOGIN_PATH = "/api/auth/github/login"
EXCHANGE_PATH = "/api/auth/github/exchange"
LOGOUT_PATH = "/api/auth/github/logout"
DEFAULT_AUTH_ERROR = "GitHub authentication failed."


class AuthStatus(str, enum.Enum):
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"


class CredentialStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def clear(self, key: str) -> None: ...


class MemoryCredentialStore:
    """Session-scoped store; lives as long as the object does."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def clear(self, key: str) -> None:
        self._data.pop(key, None)


def strip_query(url: str) -> str:
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


class AuthController:
    def __init__(self, store: CredentialStore, http: httpx.AsyncClient) -> None:
        self.store = store
        self.http = http
        self.status = AuthStatus.INITIALIZING
        self.credential: Optional[Credential] = None
        self.error: Optional[str] = None
        self._exchange_in_flight = False

    @property
    def token(self) -> Optional[str]:
        return self.credential.access_token if self.credential else None

    @property
    def user(self) -> Optional[AuthUser]:
        return self.credential.user if self.credential else None

    @property
    def login_url(self) -> str:
        return LOGIN_PATH

    def _read(self) -> Optional[Credential]:
        raw = self.store.get(STORAGE_KEY)
        if not raw:
            return None
        try:
            credential = Credential.model_validate(json.loads(raw))
        except ValueError:
            log.warning("Discarding unreadable stored credential")
            return None
        if not credential.access_token or not credential.user.login:
            return None
        return credential

    def _persist(self, credential: Optional[Credential]) -> None:
        if credential is None:
            self.store.clear(STORAGE_KEY)
        else:
            self.store.set(STORAGE_KEY, credential.model_dump_json(by_alias=True))

    def _reset(self, error: Optional[str] = None) -> None:
        self._persist(None)
        self.credential = None
        self.status = AuthStatus.UNAUTHENTICATED
        self.error = error

    def restore(self) -> AuthStatus:
        credential = self._read()
        if credential is None:
            self._reset()
        else:
            self.credential = credential
            self.status = AuthStatus.AUTHENTICATED
        return self.status

    async def _exchange(self, code: str, state: Optional[str]) -> Credential:
        resp = await self.http.post(EXCHANGE_PATH, json={"code": code, "state": state})
        if not resp.is_success:
            try:
                payload = resp.json()
            except ValueError:
                payload = {}
            message = payload.get("error") if isinstance(payload, dict) else None
            raise ServiceError(message or "OAuth exchange failed.")
        return Credential.model_validate(resp.json())

    async def handle_redirect(self, url: str) -> str:
        """Complete the OAuth redirect if ``url`` carries a code.

        Returns the URL to show afterwards, with the query string removed
        whenever an exchange was attempted.
        """
        query = parse_qs(urlsplit(url).query)
        code = (query.get("code") or [None])[0]
        state = (query.get("state") or [None])[0]
        if not code or self._exchange_in_flight:
            return url

        self._exchange_in_flight = True
        self.status = AuthStatus.AUTHENTICATING
        self.error = None
        try:
            credential = await self._exchange(code, state)
        except (ServiceError, ValueError, httpx.HTTPError) as exc:
            log.warning("OAuth exchange failed: %s", exc)
            self._reset(str(exc) or DEFAULT_AUTH_ERROR)
        else:
            self._persist(credential)
            self.credential = credential
            self.status = AuthStatus.AUTHENTICATED
        finally:
            self._exchange_in_flight = False
        return strip_query(url)

    async def logout(self) -> None:
        self._reset()
        try:
            await self.http.post(LOGOUT_PATH)
        except httpx.HTTPError as exc:
            log.info("Logout notification failed: %s", type(exc).__name__)
