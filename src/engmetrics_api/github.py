from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
import pydantic

from .analytics import as_utc, round_half_up
from .errors import UpstreamError, ValidationError
from .schemas import FILES_PLACEHOLDER, Commit, LanguageShare, PullRequest, Repository

log = logging.getLogger(__name__)

API_BASE = "https://api.github.com"
MAX_PAGES = 2
REPO_PAGE_SIZE = 100
COMMIT_PAGE_SIZE = 100
PULL_PAGE_SIZE = 50


def _auth_headers(token: Optional[str]) -> Dict[str, str]:
    headers = {"Accept": "application/vnd.github+json"}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


async def fetch_json(path: str, token: Optional[str], params: Optional[Dict[str, Any]] = None) -> Any:
    """GET one GitHub REST resource; any non-2xx status raises UpstreamError."""
    query = {k: v for k, v in (params or {}).items() if v is not None and v != ""}
    try:
        async with httpx.AsyncClient(base_url=API_BASE, timeout=None) as client:
            resp = await client.get(path, params=query, headers=_auth_headers(token))
    except httpx.TransportError as exc:
        raise UpstreamError(f"GitHub API request failed: {exc}") from exc
    if not resp.is_success:
        details = resp.text or resp.reason_phrase
        log.warning("GitHub API %s returned %s", path, resp.status_code)
        raise UpstreamError(
            f"GitHub API error ({resp.status_code}): {details}",
            upstream_status=resp.status_code,
        )
    try:
        return resp.json()
    except ValueError as exc:
        log.warning("GitHub API %s returned a non-JSON body", path)
        raise UpstreamError(f"GitHub API returned an invalid response for {path}.") from exc


async def paginate(
    path: str,
    token: Optional[str],
    params: Dict[str, Any],
    per_page: int,
    mapper: Callable[[List[Dict[str, Any]]], List[Any]],
) -> List[Any]:
    """Collect up to MAX_PAGES pages, stopping at the first empty or short page.

    The page cap bounds upstream call volume; accounts with more data than
    ``MAX_PAGES * per_page`` records are truncated.
    """
    items: List[Any] = []
    for page in range(1, MAX_PAGES + 1):
        payload = await fetch_json(path, token, {**params, "per_page": per_page, "page": page})
        if not isinstance(payload, list) or not payload:
            break
        try:
            items.extend(mapper(payload))
        except (KeyError, TypeError, AttributeError, pydantic.ValidationError) as exc:
            raise UpstreamError(f"GitHub API returned malformed records for {path}.") from exc
        if len(payload) < per_page:
            break
    return items


def map_repository(raw: Dict[str, Any]) -> Repository:
    return Repository(
        id=raw["id"],
        name=raw["name"],
        owner=(raw.get("owner") or {}).get("login", ""),
        stars=raw.get("stargazers_count") or 0,
        forks=raw.get("forks_count") or 0,
        open_issues=raw.get("open_issues_count") or 0,
        pushed_at=raw.get("pushed_at"),
        language=raw.get("language"),
        visibility="private" if raw.get("private") else "public",
    )


def map_commit(raw: Dict[str, Any]) -> Commit:
    info = raw.get("commit") or {}
    author = info.get("author") or {}
    stats = raw.get("stats") or {}
    files = stats.get("total")
    message = (info.get("message") or "").split("\n")[0]
    return Commit(
        sha=raw["sha"],
        author=author.get("name") or (raw.get("author") or {}).get("login") or "Unknown",
        message=message or "No message",
        date=author.get("date"),
        additions=stats.get("additions") or 0,
        deletions=stats.get("deletions") or 0,
        files_changed=files if files is not None else FILES_PLACEHOLDER,
    )


def map_pull_request(raw: Dict[str, Any]) -> PullRequest:
    return PullRequest(
        id=raw["id"],
        number=raw["number"],
        title=raw.get("title") or "",
        state=raw.get("state") or "open",
        created_at=raw.get("created_at"),
        closed_at=raw.get("closed_at"),
        merged_at=raw.get("merged_at"),
        url=raw.get("html_url"),
        draft=bool(raw.get("draft")),
    )


def in_window(pr: PullRequest, since: Optional[dt.datetime], until: Optional[dt.datetime]) -> bool:
    if pr.created_at is None:
        return True
    created = as_utc(pr.created_at)
    if since and created < as_utc(since):
        return False
    if until and created > as_utc(until):
        return False
    return True


async def fetch_repositories(username: Optional[str], token: Optional[str], self_: bool = False) -> List[Repository]:
    """List repositories for a user, or for the token's owner when ``self_``."""
    if not self_ and not username:
        raise ValidationError("A username is required to list repositories.")
    path = "/user/repos" if self_ else f"/users/{username}/repos"
    params = {"sort": "pushed", "direction": "desc"}
    return await paginate(path, token, params, REPO_PAGE_SIZE, lambda page: [map_repository(r) for r in page])


async def fetch_commits_for_repo(
    owner: str,
    name: str,
    token: Optional[str],
    since: Optional[dt.datetime] = None,
    until: Optional[dt.datetime] = None,
) -> List[Commit]:
    """Commits in the window; GitHub applies since/until server-side."""
    params = {"since": _iso(since), "until": _iso(until)}
    return await paginate(
        f"/repos/{owner}/{name}/commits", token, params, COMMIT_PAGE_SIZE, lambda page: [map_commit(c) for c in page]
    )


async def fetch_pull_requests_for_repo(
    owner: str,
    name: str,
    token: Optional[str],
    since: Optional[dt.datetime] = None,
    until: Optional[dt.datetime] = None,
) -> List[PullRequest]:
    """Pull requests of any state whose creation time falls in the window."""

    def _map(page: List[Dict[str, Any]]) -> List[PullRequest]:
        mapped = (map_pull_request(p) for p in page)
        return [pr for pr in mapped if in_window(pr, since, until)]

    params = {"state": "all", "sort": "updated", "direction": "desc"}
    return await paginate(f"/repos/{owner}/{name}/pulls", token, params, PULL_PAGE_SIZE, _map)


async def fetch_languages_for_repo(owner: str, name: str, token: Optional[str]) -> List[LanguageShare]:
    payload = await fetch_json(f"/repos/{owner}/{name}/languages", token)
    if not isinstance(payload, dict):
        raise UpstreamError(f"GitHub API returned malformed records for /repos/{owner}/{name}/languages.")
    total = sum(payload.values())
    return [
        LanguageShare(name=language, percentage=round_half_up(size / total * 100) if total > 0 else 0)
        for language, size in payload.items()
    ]
