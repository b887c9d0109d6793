import asyncio
import json

import httpx
import pytest
import respx
from httpx import ASGITransport, AsyncClient, Response

from engmetrics_api.app import app
from engmetrics_api.oauth import STATE_COOKIE, TOKEN_URL, USER_URL
from engmetrics_api.session import STORAGE_KEY, AuthController, AuthStatus, MemoryCredentialStore

USER_PAYLOAD = {"id": 7, "login": "alice", "name": "Alice", "avatar_url": None, "html_url": "https://github.com/alice"}
CALLBACK = "http://localhost:5173/?code=abc&state=s1"


@pytest.fixture
async def http(client):
    # same app and overrides as ``client``, with the state cookie a browser would send
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test", headers={"Cookie": f"{STATE_COOKIE}=s1"}
    ) as ac:
        yield ac


def _stored(access_token="tok", login="alice"):
    return json.dumps({"accessToken": access_token, "user": {"id": 7, "login": login}})


@pytest.mark.anyio
async def test_restore_authenticated(http):
    store = MemoryCredentialStore()
    store.set(STORAGE_KEY, _stored())
    auth = AuthController(store, http)
    assert auth.status is AuthStatus.INITIALIZING

    assert auth.restore() is AuthStatus.AUTHENTICATED
    assert auth.token == "tok"
    assert auth.user.login == "alice"


@pytest.mark.anyio
@pytest.mark.parametrize("raw", [None, "not json", _stored(access_token=""), _stored(login=""), '{"accessToken": "t"}'])
async def test_restore_unauthenticated_clears_store(http, raw):
    store = MemoryCredentialStore()
    if raw is not None:
        store.set(STORAGE_KEY, raw)
    auth = AuthController(store, http)

    assert auth.restore() is AuthStatus.UNAUTHENTICATED
    assert auth.token is None
    assert store.get(STORAGE_KEY) is None


@pytest.mark.anyio
async def test_handle_redirect_success_persists_credential(http):
    store = MemoryCredentialStore()
    auth = AuthController(store, http)
    auth.restore()

    with respx.mock() as rsx:
        rsx.post(TOKEN_URL).mock(return_value=Response(200, json={"access_token": "gho_token"}))
        rsx.get(USER_URL).mock(return_value=Response(200, json=USER_PAYLOAD))
        clean = await auth.handle_redirect(CALLBACK)

    assert clean == "http://localhost:5173/"
    assert auth.status is AuthStatus.AUTHENTICATED
    assert auth.token == "gho_token"
    assert auth.error is None
    stored = json.loads(store.get(STORAGE_KEY))
    assert stored["accessToken"] == "gho_token"
    assert stored["user"]["login"] == "alice"


@pytest.mark.anyio
async def test_handle_redirect_failure_clears_and_reports(http):
    store = MemoryCredentialStore()
    store.set(STORAGE_KEY, _stored())
    auth = AuthController(store, http)
    auth.restore()

    clean = await auth.handle_redirect("http://localhost:5173/?code=abc&state=forged")

    assert clean == "http://localhost:5173/"
    assert auth.status is AuthStatus.UNAUTHENTICATED
    assert auth.error == "State verification failed."
    assert auth.token is None
    assert store.get(STORAGE_KEY) is None


@pytest.mark.anyio
async def test_handle_redirect_without_code_is_noop(http):
    auth = AuthController(MemoryCredentialStore(), http)
    auth.restore()
    url = "http://localhost:5173/?tab=commits"
    assert await auth.handle_redirect(url) == url
    assert auth.status is AuthStatus.UNAUTHENTICATED


@pytest.mark.anyio
async def test_concurrent_redirects_exchange_once():
    calls = []

    class SlowServer:
        async def post(self, path, json=None):
            calls.append(path)
            await asyncio.sleep(0.01)
            return Response(200, json={"accessToken": "gho_token", "user": {"id": 7, "login": "alice"}})

    auth = AuthController(MemoryCredentialStore(), SlowServer())
    auth.restore()
    cleaned = await asyncio.gather(auth.handle_redirect(CALLBACK), auth.handle_redirect(CALLBACK))

    assert calls == ["/api/auth/github/exchange"]
    assert cleaned == ["http://localhost:5173/", CALLBACK]
    assert auth.status is AuthStatus.AUTHENTICATED


@pytest.mark.anyio
async def test_logout_clears_state_even_if_server_unreachable():
    def _unreachable(request):
        raise httpx.ConnectError("down", request=request)

    store = MemoryCredentialStore()
    store.set(STORAGE_KEY, _stored())
    async with AsyncClient(transport=httpx.MockTransport(_unreachable), base_url="http://test") as broken:
        auth = AuthController(store, broken)
        auth.restore()
        await auth.logout()

    assert auth.status is AuthStatus.UNAUTHENTICATED
    assert auth.credential is None
    assert store.get(STORAGE_KEY) is None


@pytest.mark.anyio
async def test_logout_notifies_server(http):
    store = MemoryCredentialStore()
    store.set(STORAGE_KEY, _stored())
    auth = AuthController(store, http)
    auth.restore()
    await auth.logout()
    assert auth.status is AuthStatus.UNAUTHENTICATED
    assert auth.login_url == "/api/auth/github/login"
