"""
Derived progress metrics shared by both store adapters and the admin report.

Nothing here touches storage; every function is deterministic so the rules
(blending, monotonic merge, streak continuation, quiz percentages) can be
checked in isolation.
"""
import datetime
import math
from dataclasses import dataclass
from typing import Iterable

CONTENT_WEIGHT = 0.70
ACTIVITIES_WEIGHT = 0.30


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp_percent(value) -> int:
    """Clamp to [0, 100] and round to a whole percent. None/NaN count as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return round_half_up(min(100.0, max(0.0, number)))


def combined_progress(content, activities) -> int:
    blended = clamp_percent(content) * CONTENT_WEIGHT + clamp_percent(activities) * ACTIVITIES_WEIGHT
    return clamp_percent(blended)


def merge_progress(existing: tuple[int, int] | None, content, activities) -> tuple[int, int]:
    """
    Content only ever grows; activities is last-write-wins so a re-attempt on
    an easier practice level replaces the stored value.
    """
    new_content = clamp_percent(content)
    new_activities = clamp_percent(activities)
    if existing is None:
        return new_content, new_activities
    old_content, _ = existing
    return max(clamp_percent(old_content), new_content), new_activities


def normalize_date(value) -> datetime.date | None:
    if value is None:
        return None
    if isinstance(value, datetime.date) and not isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.datetime):
        return value.date()
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.date.fromisoformat(text[:10])
    except ValueError:
        return None


def activity_day(now) -> datetime.date:
    """Calendar day of `now` as the caller expressed it (no timezone shifting)."""
    if isinstance(now, str):
        text = now.strip()
        try:
            return datetime.datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            parsed = normalize_date(text)
            if parsed is None:
                raise ValueError(f"Unrecognised activity timestamp: {now!r}")
            return parsed
    day = normalize_date(now)
    if day is None:
        raise ValueError("Activity timestamp is required")
    return day


def next_streak(last_activity_date, streak: int | None, today: datetime.date) -> int:
    last_date = normalize_date(last_activity_date)
    current = max(int(streak or 0), 0)
    if last_date is None:
        # First recorded day: no run is confirmed until the next day.
        return 0
    if last_date == today:
        return current
    if last_date == today - datetime.timedelta(days=1):
        return current + 1
    return 1


def attempt_percent(score, total) -> int:
    try:
        denominator = float(total or 0)
    except (TypeError, ValueError):
        denominator = 0.0
    if denominator == 0:
        denominator = 1.0
    try:
        numerator = float(score or 0)
    except (TypeError, ValueError):
        numerator = 0.0
    return round_half_up(numerator / denominator * 100)


def mean_rounded(values: Iterable[int]) -> int:
    items = list(values)
    if not items:
        return 0
    return round_half_up(sum(items) / len(items))


@dataclass(frozen=True)
class ScoreSummary:
    quizzes_taken: int = 0
    avg_score: int = 0
    best_score: int = 0
    last_quiz_at: str | None = None


def summarize_scores(attempts: Iterable) -> ScoreSummary:
    """
    Fold attempts (newest first, as the score log returns them) into the
    per-student quiz summary. Each attempt needs `score`, `total` and
    `completed_at` attributes.
    """
    percents = []
    last_quiz_at = None
    for attempt in attempts:
        percents.append(attempt_percent(attempt.score, attempt.total))
        if last_quiz_at is None and attempt.completed_at:
            last_quiz_at = attempt.completed_at
    if not percents:
        return ScoreSummary()
    return ScoreSummary(
        quizzes_taken=len(percents),
        avg_score=mean_rounded(percents),
        best_score=max(percents),
        last_quiz_at=last_quiz_at,
    )
