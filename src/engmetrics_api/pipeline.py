from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Any, Awaitable, List, Optional, Sequence

from . import github
from .analytics import as_utc, build_report
from .errors import BusyError, DataError, ServiceError
from .schemas import AnalyticsReport, Commit, PullRequest, RepoLanguages, Repository

log = logging.getLogger(__name__)

NO_REPOSITORIES = "No repositories found. Check your username or token."
MISSING_USERNAME = "Please enter a GitHub username."
LOAD_FAILED = "Failed to load analytics."


async def _join(*aws: Awaitable[Any]) -> List[Any]:
    """Await all of ``aws``; on the first failure cancel the rest and re-raise.

    Siblings are always settled before this returns or raises.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()  # type: ignore[misc]
    return [task.result() for task in tasks]


async def _fetch_repo_bundle(
    repo: Repository, token: Optional[str], since: dt.datetime, until: dt.datetime
) -> tuple[List[Commit], List[PullRequest], RepoLanguages]:
    commits, pulls, languages = await _join(
        github.fetch_commits_for_repo(repo.owner, repo.name, token, since, until),
        github.fetch_pull_requests_for_repo(repo.owner, repo.name, token, since, until),
        github.fetch_languages_for_repo(repo.owner, repo.name, token),
    )
    return (
        [c.model_copy(update={"repo": repo.name}) for c in commits],
        [p.model_copy(update={"repo": repo.name}) for p in pulls],
        RepoLanguages(repo=repo.name, languages=languages),
    )


async def run_analysis(
    username: Optional[str],
    token: Optional[str],
    since: dt.datetime,
    until: dt.datetime,
    repos: Optional[Sequence[str]] = None,
    self_: bool = False,
    max_repositories: int = 10,
    now: Optional[dt.datetime] = None,
) -> AnalyticsReport:
    """Fetch everything for one window and aggregate it.

    Per-repository fetches run concurrently; the first failure aborts the
    whole run so aggregation never sees partial data.
    """
    since, until = as_utc(since), as_utc(until)
    repositories = await github.fetch_repositories(username, token, self_=self_)
    if not repositories:
        raise DataError(NO_REPOSITORIES)

    if repos:
        wanted = set(repos)
        repositories = [r for r in repositories if r.name in wanted]
    selected = repositories[:max_repositories]
    if not selected:
        raise DataError(NO_REPOSITORIES)
    log.info("Analysing %s repositories for %s", len(selected), "self" if self_ else username)

    bundles = await _join(*(_fetch_repo_bundle(r, token, since, until) for r in selected))

    commits = [c for bundle in bundles for c in bundle[0]]
    pulls = [p for bundle in bundles for p in bundle[1]]
    languages = [bundle[2] for bundle in bundles]
    report = build_report(selected, commits, pulls, languages, since, until, now=now)
    log.info("Analysis complete: %s commits, %s pull requests", len(commits), len(pulls))
    return report


class AnalysisRunner:
    """Holds the latest analysis result for a dashboard session.

    Only one run is in flight at a time. A failed run drops the previous
    report so stale numbers are never shown next to an error.
    """

    def __init__(self, max_repositories: int = 10) -> None:
        self.max_repositories = max_repositories
        self.report: Optional[AnalyticsReport] = None
        self.error: Optional[str] = None
        self.loading = False

    async def load(
        self,
        username: Optional[str],
        token: Optional[str],
        since: dt.datetime,
        until: dt.datetime,
        repos: Optional[Sequence[str]] = None,
        now: Optional[dt.datetime] = None,
    ) -> Optional[AnalyticsReport]:
        if not username:
            self.error = MISSING_USERNAME
            return None
        if self.loading:
            raise BusyError("An analysis run is already in progress.")

        self.loading = True
        self.error = None
        try:
            self.report = await run_analysis(
                username, token, since, until, repos=repos, max_repositories=self.max_repositories, now=now
            )
        except ServiceError as exc:
            log.warning("Analysis failed: %s", exc)
            self.error = str(exc) or LOAD_FAILED
            self.report = None
        except Exception:
            log.exception("Analysis failed unexpectedly")
            self.error = LOAD_FAILED
            self.report = None
        finally:
            self.loading = False
        return self.report
