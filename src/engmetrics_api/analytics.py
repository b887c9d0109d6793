"""Pure aggregation over normalized GitHub records.

Every function here recomputes its output from the full record set it is
given; none of them mutate their inputs. Functions that depend on the current
time take ``now`` so results are reproducible.
"""

from __future__ import annotations

import datetime as dt
import math
from typing import Dict, Iterable, List, Optional, Sequence

from .schemas import (
    ActivityDataset,
    ActivitySeries,
    AnalyticsReport,
    Commit,
    LanguageShare,
    PullRequest,
    PullRequestStatus,
    RepoLanguages,
    Repository,
    StalePullRequest,
    Summary,
    TimelineEntry,
)

STALE_AFTER_HOURS = 24 * 7
HIGH_THROUGHPUT_COMMITS = 120
TIMELINE_DISPLAY_LIMIT = 20
PALETTE = ("#2563eb", "#7c3aed", "#0ea5e9", "#10b981", "#f97316", "#ec4899")
FALLBACK_INSIGHT = "Not enough data yet: widen the date range or add repositories to unlock insights."


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value


def hours_between(start: dt.datetime, end: dt.datetime) -> int:
    # whole hours, truncated toward zero
    return int((as_utc(end) - as_utc(start)).total_seconds() / 3600)


def humanize_age(start: dt.datetime, now: dt.datetime) -> str:
    # unit picked from the rounded minute count, value rounded to nearest
    seconds = (as_utc(now) - as_utc(start)).total_seconds()
    minutes = round_half_up(seconds / 60)
    if minutes < 1:
        count, unit = round_half_up(seconds), "second"
    elif minutes < 60:
        count, unit = minutes, "minute"
    elif minutes < 60 * 24:
        count, unit = round_half_up(minutes / 60), "hour"
    elif minutes < 60 * 24 * 30:
        count, unit = round_half_up(minutes / (60 * 24)), "day"
    elif minutes < 60 * 24 * 365:
        count, unit = round_half_up(minutes / (60 * 24 * 30)), "month"
    else:
        count, unit = round_half_up(minutes / (60 * 24 * 365)), "year"
    return f"{count} {unit}{'s' if count != 1 else ''} ago"


def _open_age_hours(pr: PullRequest, now: dt.datetime) -> Optional[int]:
    if pr.lifecycle != "open" or pr.created_at is None:
        return None
    return hours_between(pr.created_at, now)


def build_summary(
    repositories: Sequence[Repository],
    commits: Sequence[Commit],
    pull_requests: Sequence[PullRequest],
    since: dt.datetime,
    until: dt.datetime,
    now: Optional[dt.datetime] = None,
) -> Summary:
    now = now or utcnow()
    total = len(commits)
    days = max((as_utc(until).date() - as_utc(since).date()).days, 1)

    durations = []
    for pr in pull_requests:
        if pr.lifecycle == "open" or pr.created_at is None:
            continue
        resolved = pr.merged_at or pr.closed_at
        if resolved is None:
            continue
        hours = hours_between(pr.created_at, resolved)
        if hours >= 0:
            durations.append(hours)
    durations.sort()

    long_lived = 0
    for pr in pull_requests:
        age = _open_age_hours(pr, now)
        if age is not None and age > STALE_AFTER_HOURS:
            long_lived += 1

    return Summary(
        total_commits=total,
        active_repos=len({c.repo for c in commits if c.date is not None}),
        unique_authors=len({c.author for c in commits}),
        velocity=round_half_up(total / days * 7),
        review_turnaround_hours=durations[len(durations) // 2] if durations else None,
        long_lived_branches=long_lived,
        repositories=len(repositories),
    )


def build_commit_activity_dataset(commits: Iterable[Commit]) -> ActivityDataset:
    grouped: Dict[Optional[str], Dict[str, int]] = {}
    for commit in commits:
        if commit.date is None:
            continue
        day = as_utc(commit.date).astimezone(dt.timezone.utc).date().isoformat()
        per_day = grouped.setdefault(commit.repo, {})
        per_day[day] = per_day.get(day, 0) + 1

    labels = sorted({day for per_day in grouped.values() for day in per_day})
    datasets = []
    for index, (repo, per_day) in enumerate(grouped.items()):
        color = PALETTE[index % len(PALETTE)]
        datasets.append(
            ActivitySeries(
                label=repo or "",
                data=[per_day.get(day, 0) for day in labels],
                border_color=color,
                background_color=f"{color}33",
            )
        )
    return ActivityDataset(labels=labels, datasets=datasets)


def build_commit_timeline(commits: Iterable[Commit]) -> List[TimelineEntry]:
    """All dated commits, newest first. Callers truncate for display."""
    dated = [c for c in commits if c.date is not None]
    dated.sort(key=lambda c: as_utc(c.date), reverse=True)  # type: ignore[arg-type]
    return [
        TimelineEntry(
            sha=c.sha,
            repo=c.repo,
            author=c.author,
            message=c.message,
            date=c.date,
            files_changed=c.files_changed,
        )
        for c in dated
    ]


def build_pull_request_status(pull_requests: Iterable[PullRequest], now: Optional[dt.datetime] = None) -> PullRequestStatus:
    now = now or utcnow()
    counts = {"open": 0, "merged": 0, "closed": 0}
    stale = []
    for pr in pull_requests:
        counts[pr.lifecycle] += 1
        age = _open_age_hours(pr, now)
        if age is not None and age > STALE_AFTER_HOURS:
            stale.append((age, pr))

    stale.sort(key=lambda item: item[0], reverse=True)
    return PullRequestStatus(
        **counts,
        stale=[
            StalePullRequest(
                id=pr.id,
                title=pr.title,
                repo=pr.repo,
                url=pr.url,
                age_human=humanize_age(pr.created_at, now),  # type: ignore[arg-type]
            )
            for _, pr in stale
        ],
    )


def build_repositories_snapshot(repositories: Iterable[Repository]) -> List[Repository]:
    return sorted(repositories, key=lambda r: r.stars, reverse=True)


def build_insights(summary: Summary, status: PullRequestStatus) -> List[str]:
    insights = []
    if summary.velocity > 0:
        insights.append(
            f"Shipping {summary.velocity} commits per week across {summary.active_repos} active repositories."
        )
    if status.open > 0:
        insights.append(
            f"{status.open} pull requests are open and {len(status.stale)} of them have waited longer than a week."
        )
    if summary.total_commits > HIGH_THROUGHPUT_COMMITS:
        insights.append("Commit volume is high; spread reviews across more maintainers to avoid bottlenecks.")
    if summary.long_lived_branches > 0:
        insights.append(
            f"{summary.long_lived_branches} long-lived branches may be blocking merges. Prefer smaller, incremental pull requests."
        )
    if not insights:
        insights.append(FALLBACK_INSIGHT)
    return insights


def build_language_mix(language_maps: Iterable[RepoLanguages]) -> List[LanguageShare]:
    """Combine per-repository shares by summing percentages per language.

    This does not re-weight by byte totals; the summed value is only clamped
    to 100.
    """
    totals: Dict[str, int] = {}
    for entry in language_maps:
        for share in entry.languages:
            totals[share.name] = totals.get(share.name, 0) + share.percentage

    combined = [LanguageShare(name=name, percentage=min(100, pct)) for name, pct in totals.items()]
    combined.sort(key=lambda s: s.percentage, reverse=True)
    return combined


def build_report(
    repositories: Sequence[Repository],
    commits: Sequence[Commit],
    pull_requests: Sequence[PullRequest],
    language_maps: Sequence[RepoLanguages],
    since: dt.datetime,
    until: dt.datetime,
    now: Optional[dt.datetime] = None,
) -> AnalyticsReport:
    now = now or utcnow()
    summary = build_summary(repositories, commits, pull_requests, since, until, now=now)
    status = build_pull_request_status(pull_requests, now=now)
    return AnalyticsReport(
        summary=summary,
        commit_activity=build_commit_activity_dataset(commits),
        commit_timeline=build_commit_timeline(commits),
        pull_request_status=status,
        repositories=build_repositories_snapshot(repositories),
        insights=build_insights(summary, status),
        languages=build_language_mix(language_maps),
    )
