from __future__ import annotations

import datetime as dt
import logging
from functools import lru_cache
from typing import List, Optional

from fastapi import Body, Cookie, Depends, FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response

from .config import DateRange, Settings, configure_logging, get_settings
from .errors import register_error_handlers
from .oauth import STATE_COOKIE, STATE_TTL_SECONDS, ConsumedStateRegistry, OAuthExchange, build_authorize_url, issue_state
from .pipeline import run_analysis
from .schemas import AnalyticsReport, ExchangeRequest

log = logging.getLogger(__name__)

app = FastAPI(title="Engineering Metrics — GitHub")

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


@lru_cache()
def get_state_registry() -> ConsumedStateRegistry:
    return ConsumedStateRegistry()


@app.on_event("startup")
async def _startup():
    configure_logging(get_settings().log_level)


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() in ("bearer", "token") and token.strip():
        return token.strip()
    return None


@app.get("/healthz")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/api/auth/github/login")
async def github_login(settings: Settings = Depends(get_settings)):
    state = issue_state()
    url = build_authorize_url(settings, state)
    log.info("Issued OAuth state, redirecting to GitHub")
    resp = RedirectResponse(url, status_code=302)
    resp.set_cookie(
        STATE_COOKIE,
        state,
        max_age=STATE_TTL_SECONDS,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
    return resp


@app.post("/api/auth/github/exchange")
async def github_exchange(
    body: Optional[ExchangeRequest] = Body(None),
    stored_state: Optional[str] = Cookie(None, alias=STATE_COOKIE),
    settings: Settings = Depends(get_settings),
    registry: ConsumedStateRegistry = Depends(get_state_registry),
):
    body = body or ExchangeRequest()
    credential = await OAuthExchange(settings, registry).run(body.code, body.state, stored_state)
    resp = JSONResponse(credential.model_dump(mode="json", by_alias=True))
    resp.delete_cookie(STATE_COOKIE, path="/")
    return resp


@app.post("/api/auth/github/logout", status_code=204)
async def github_logout():
    resp = Response(status_code=204)
    resp.delete_cookie(STATE_COOKIE, path="/")
    return resp


@app.get("/api/analytics", response_model=AnalyticsReport)
async def analytics(
    username: Optional[str] = Query(None),
    since: Optional[dt.datetime] = Query(None),
    until: Optional[dt.datetime] = Query(None),
    repos: Optional[List[str]] = Query(None),
    self_: bool = Query(False, alias="self"),
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
):
    window = DateRange.default(days=settings.default_window_days)
    return await run_analysis(
        username,
        _bearer(authorization),
        since or window.since,
        until or window.until,
        repos=repos,
        self_=self_,
        max_repositories=settings.max_repositories,
    )
