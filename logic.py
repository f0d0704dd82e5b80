from collections import Counter
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List, Optional, Sequence

import structlog

import models
import schemas

# Set up logging
logger = structlog.get_logger(__name__)

TREND_DAYS = 30


# ---------------------------------------------------------------------------
# Tag filtering

def matches_tags(skills: Optional[Sequence[str]], tags: Optional[Sequence[str]]) -> bool:
    """Keep a job when any of its skills contains any selected tag (case-insensitive).

    No selected tags means no filtering.
    """
    if not tags:
        return True
    lowered_tags = [tag.lower() for tag in tags]
    return any(
        tag in skill.lower() for skill in (skills or []) for tag in lowered_tags
    )


def filter_jobs_by_tags(jobs: Iterable[models.Job], tags: Optional[Sequence[str]]) -> List[models.Job]:
    return [job for job in jobs if matches_tags(job.skills_required, tags)]


# ---------------------------------------------------------------------------
# Applications

def is_duplicate_violation(message: str) -> bool:
    """True when a database error message reports a unique constraint violation."""
    lowered = (message or "").lower()
    return "duplicate" in lowered or "unique" in lowered


# ---------------------------------------------------------------------------
# Candidate outreach

def job_update_subject(job_title: str) -> str:
    return f"Update about the position: {job_title}"


def candidate_message_content(job_title: str, content: str) -> str:
    return f"[{job_title}]\n\n{content}"


# ---------------------------------------------------------------------------
# Analytics rollups

def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; every stored timestamp is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def count_by_status(applications: Iterable[models.Application]) -> schemas.StatusCounts:
    counts = Counter(models.ApplicationStatus(app.status).value for app in applications)
    return schemas.StatusCounts(**{status.value: counts.get(status.value, 0) for status in models.ApplicationStatus})


def conversion_rate(hired: int, total: int) -> float:
    """Hired share of all applications as a percentage, 0 when there are none."""
    if total == 0:
        return 0.0
    return hired / total * 100


def average_response_hours(applications: Iterable[models.Application]) -> float:
    """Mean hours from creation to status change over non-pending applications.

    Applications without a recorded status change fall back to ``updated_at``.
    """
    hours = []
    for app in applications:
        if app.status == models.ApplicationStatus.pending:
            continue
        responded_at = app.status_changed_at or app.updated_at
        delta = _as_utc(responded_at) - _as_utc(app.created_at)
        hours.append(delta.total_seconds() / 3600)
    if not hours:
        return 0.0
    return sum(hours) / len(hours)


def applications_trend(
    applications: Iterable[models.Application], today: Optional[date] = None
) -> List[schemas.TrendPoint]:
    """Daily application counts for the 30 calendar days ending ``today``, oldest first."""
    today = today or datetime.now(timezone.utc).date()
    per_day = Counter(_as_utc(app.created_at).date() for app in applications)
    points = []
    for offset in range(TREND_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        points.append(schemas.TrendPoint(date=day.isoformat(), count=per_day.get(day, 0)))
    return points


def job_analytics(job: models.Job, applications: Sequence[models.Application]) -> schemas.JobAnalytics:
    counts = count_by_status(applications)
    total = len(applications)
    return schemas.JobAnalytics(
        job_id=job.id,
        job_title=job.title,
        total_applications=total,
        conversion_rate=conversion_rate(counts.hired, total),
        avg_response_time=average_response_hours(applications),
        **counts.model_dump(),
    )


def empty_company_analytics(today: Optional[date] = None) -> schemas.CompanyAnalytics:
    return schemas.CompanyAnalytics(
        jobs=[],
        overview=schemas.OverviewStats(
            total_jobs=0,
            total_applications=0,
            overall_conversion_rate=0.0,
            avg_response_time=0.0,
            applications_by_status=schemas.StatusCounts(),
            applications_trend=applications_trend([], today=today),
        ),
    )


def company_analytics(
    jobs: Sequence[models.Job],
    applications: Sequence[models.Application],
    today: Optional[date] = None,
) -> schemas.CompanyAnalytics:
    """Roll applications up per job and for the whole company in a single pass."""
    if not jobs:
        return empty_company_analytics(today=today)

    by_job: dict = {job.id: [] for job in jobs}
    for app in applications:
        by_job.setdefault(app.job_id, []).append(app)

    counts = count_by_status(applications)
    total = len(applications)
    overview = schemas.OverviewStats(
        total_jobs=len(jobs),
        total_applications=total,
        overall_conversion_rate=conversion_rate(counts.hired, total),
        avg_response_time=average_response_hours(applications),
        applications_by_status=counts,
        applications_trend=applications_trend(applications, today=today),
    )
    logger.info("Computed company analytics", jobs=len(jobs), applications=total)
    return schemas.CompanyAnalytics(
        jobs=[job_analytics(job, by_job[job.id]) for job in jobs],
        overview=overview,
    )
