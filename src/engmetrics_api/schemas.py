from __future__ import annotations

import datetime as dt
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

FILES_PLACEHOLDER = "—"

Lifecycle = Literal["open", "merged", "closed"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Repository(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: int
    name: str
    owner: str
    stars: int = 0
    forks: int = 0
    open_issues: int = 0
    pushed_at: Optional[dt.datetime] = None
    language: Optional[str] = None
    visibility: Literal["public", "private"] = "public"


class Commit(CamelModel):
    sha: str
    author: str = "Unknown"
    message: str = "No message"
    date: Optional[dt.datetime] = None
    additions: int = 0
    deletions: int = 0
    files_changed: Union[int, str] = FILES_PLACEHOLDER
    repo: Optional[str] = None


class PullRequest(CamelModel):
    id: int
    number: int
    title: str = ""
    state: str
    created_at: Optional[dt.datetime] = None
    closed_at: Optional[dt.datetime] = None
    merged_at: Optional[dt.datetime] = None
    url: Optional[str] = None
    draft: bool = False
    repo: Optional[str] = None

    @property
    def lifecycle(self) -> Lifecycle:
        if self.state == "open":
            return "open"
        return "merged" if self.merged_at else "closed"


class LanguageShare(CamelModel):
    name: str
    percentage: int


class RepoLanguages(CamelModel):
    repo: str
    languages: List[LanguageShare]


class Summary(CamelModel):
    total_commits: int
    active_repos: int
    unique_authors: int
    velocity: int
    review_turnaround_hours: Optional[int]
    long_lived_branches: int
    repositories: int


class ActivitySeries(CamelModel):
    label: str
    data: List[int]
    border_color: str
    background_color: str


class ActivityDataset(CamelModel):
    labels: List[str]
    datasets: List[ActivitySeries]


class TimelineEntry(CamelModel):
    sha: str
    repo: Optional[str]
    author: str
    message: str
    date: dt.datetime
    files_changed: Union[int, str]


class StalePullRequest(CamelModel):
    id: int
    title: str
    repo: Optional[str]
    url: Optional[str] = None
    age_human: str


class PullRequestStatus(CamelModel):
    open: int = 0
    merged: int = 0
    closed: int = 0
    stale: List[StalePullRequest] = []


class AnalyticsReport(CamelModel):
    summary: Summary
    commit_activity: ActivityDataset
    commit_timeline: List[TimelineEntry]
    pull_request_status: PullRequestStatus
    repositories: List[Repository]
    insights: List[str]
    languages: List[LanguageShare]


class AuthUser(CamelModel):
    id: int
    login: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    html_url: Optional[str] = None


class Credential(CamelModel):
    access_token: str
    user: AuthUser


class ExchangeRequest(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None
