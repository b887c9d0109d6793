"""GitHub OAuth web flow with cookie-bound anti-forgery state.

The flow moves through ``OAuthStage`` values in order and falls back to
``IDLE`` on any failure. Access tokens, authorization codes and the client
secret are never logged.
"""

from __future__ import annotations

import enum
import logging
import secrets
import time
from typing import Dict, Optional
from urllib.parse import urlencode

import httpx

from .config import Settings
from .errors import ConfigurationError, ServiceError, UpstreamError, ValidationError
from .schemas import AuthUser, Credential

log = logging.getLogger(__name__)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
USER_URL = "https://api.github.com/user"
STATE_COOKIE = "github_oauth_state"
STATE_TTL_SECONDS = 15 * 60
SCOPES = "repo read:org"


class OAuthStage(str, enum.Enum):
    IDLE = "idle"
    STATE_ISSUED = "state-issued"
    CODE_RECEIVED = "code-received"
    TOKEN_EXCHANGED = "token-exchanged"
    IDENTITY_FETCHED = "identity-fetched"
    COMPLETE = "complete"


class ConsumedStateRegistry:
    """States that already went through the verification gate.

    Entries expire with the state cookie, after which the cookie itself is
    gone and a replay fails on the missing cookie instead.
    """

    def __init__(self, ttl: float = STATE_TTL_SECONDS) -> None:
        self.ttl = ttl
        self._seen: Dict[str, float] = {}

    def _prune(self, now: float) -> None:
        for state in [s for s, expires in self._seen.items() if expires <= now]:
            del self._seen[state]

    def consume(self, state: str) -> bool:
        """Mark ``state`` consumed; False if it already was."""
        now = time.monotonic()
        self._prune(now)
        if state in self._seen:
            return False
        self._seen[state] = now + self.ttl
        return True


def issue_state() -> str:
    return secrets.token_hex(16)


def require_client_id(settings: Settings) -> str:
    if not settings.github_client_id:
        raise ConfigurationError("GitHub client ID is not configured on the server.")
    return settings.github_client_id


def build_authorize_url(settings: Settings, state: str) -> str:
    params = {
        "client_id": require_client_id(settings),
        "redirect_uri": settings.github_redirect_uri,
        "scope": SCOPES,
        "state": state,
        "allow_signup": "false",
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


class OAuthExchange:
    """One callback's walk from verified code to credential."""

    def __init__(self, settings: Settings, registry: ConsumedStateRegistry) -> None:
        self.settings = settings
        self.registry = registry
        self.stage = OAuthStage.STATE_ISSUED

    def _advance(self, stage: OAuthStage) -> None:
        log.info("OAuth exchange %s -> %s", self.stage.value, stage.value)
        self.stage = stage

    def verify(self, code: Optional[str], state: Optional[str], stored_state: Optional[str]) -> None:
        if not code or not state:
            raise ValidationError("Missing OAuth code or state.")
        if not stored_state or not secrets.compare_digest(stored_state.encode(), state.encode()):
            raise ValidationError("State verification failed.")
        if not self.registry.consume(state):
            raise ValidationError("State verification failed.")
        self._advance(OAuthStage.CODE_RECEIVED)

    async def _exchange_code(self, client: httpx.AsyncClient, code: str, state: str) -> str:
        resp = await client.post(
            TOKEN_URL,
            json={
                "client_id": self.settings.github_client_id,
                "client_secret": self.settings.github_client_secret,
                "code": code,
                "redirect_uri": self.settings.github_redirect_uri,
                "state": state,
            },
            headers={"Accept": "application/json"},
        )
        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {}
        if not resp.is_success or payload.get("error") or not payload.get("access_token"):
            message = payload.get("error_description") or payload.get("error") or "OAuth exchange failed."
            raise UpstreamError(message, status_code=400, upstream_status=resp.status_code)
        self._advance(OAuthStage.TOKEN_EXCHANGED)
        return payload["access_token"]

    async def _fetch_identity(self, client: httpx.AsyncClient, access_token: str) -> AuthUser:
        resp = await client.get(
            USER_URL,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/vnd.github+json"},
        )
        if not resp.is_success:
            details = resp.text or resp.reason_phrase
            raise UpstreamError(
                f"Failed to fetch authenticated user profile: {details}",
                status_code=502,
                upstream_status=resp.status_code,
            )
        user = resp.json()
        self._advance(OAuthStage.IDENTITY_FETCHED)
        return AuthUser(
            id=user["id"],
            login=user["login"],
            name=user.get("name"),
            avatar_url=user.get("avatar_url"),
            html_url=user.get("html_url"),
        )

    async def run(self, code: Optional[str], state: Optional[str], stored_state: Optional[str]) -> Credential:
        """Verify the callback, trade the code for a token and load the user."""
        if not self.settings.github_client_id or not self.settings.github_client_secret:
            raise ConfigurationError("GitHub OAuth credentials are not configured on the server.")
        try:
            self.verify(code, state, stored_state)
            async with httpx.AsyncClient(timeout=None) as client:
                access_token = await self._exchange_code(client, code, state)  # type: ignore[arg-type]
                user = await self._fetch_identity(client, access_token)
        except ServiceError as exc:
            log.warning("OAuth exchange failed at %s: %s", self.stage.value, exc)
            self.stage = OAuthStage.IDLE
            raise
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            log.warning("OAuth exchange unexpected failure at %s: %s", self.stage.value, type(exc).__name__)
            self.stage = OAuthStage.IDLE
            raise ServiceError("OAuth exchange failed.") from exc
        self._advance(OAuthStage.COMPLETE)
        return Credential(access_token=access_token, user=user)
