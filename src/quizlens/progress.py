"""Per-user progress reporting over completed quiz attempts."""

from __future__ import annotations

import logging
import math
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence, TYPE_CHECKING

from .models import Attempt

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)

_DEFAULT_RECENT_LIMIT = 10
_DEFAULT_TITLE_CHARS = 20
_ELLIPSIS = "..."


class CompletedAttemptSource(Protocol):
    def list_completed_attempts(self, user_id: str) -> list[Attempt]: ...


class ProgressReportError(RuntimeError):
    """Raised when a progress report cannot be produced."""


def percentage(score: float | None, max_score: float | None) -> int:
    """Return ``score`` as a whole percentage of ``max_score`` (0 when there is no maximum)."""

    if not max_score or max_score <= 0:
        return 0
    return _round_half_up(100.0 * (score or 0) / max_score)


def truncate_title(title: str, limit: int = _DEFAULT_TITLE_CHARS) -> str:
    if len(title) > limit:
        return title[:limit] + _ELLIPSIS
    return title


@dataclass(slots=True)
class TopicStats:
    topic: str
    total_score: float = 0.0
    max_score: float = 0.0
    attempts: int = 0

    def add(self, attempt: Attempt) -> None:
        self.total_score += attempt.total_score or 0
        self.max_score += attempt.max_score or 0
        self.attempts += 1

    def to_payload(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "avgScore": percentage(self.total_score, self.max_score),
            "attempts": self.attempts,
            "totalScore": _number(self.total_score),
            "maxScore": _number(self.max_score),
        }


@dataclass(slots=True)
class ProgressReport:
    """Transient report derived from a snapshot of a user's completed attempts."""

    user_id: str
    total_attempts: int
    avg_score: int
    total_score: float
    total_max_score: float
    topics: list[dict[str, Any]] = field(default_factory=list)
    recent_attempts: list[dict[str, Any]] = field(default_factory=list)
    performance_data: list[dict[str, Any]] = field(default_factory=list)

    @property
    def completion_rate(self) -> int:
        # Presence indicator only: 100 once any attempt is finished.
        return 100 if self.total_attempts > 0 else 0

    def to_payload(self) -> dict[str, Any]:
        return {
            "totalAttempts": self.total_attempts,
            "avgScore": self.avg_score,
            "topics": self.topics,
            "recentAttempts": self.recent_attempts,
            "performanceData": self.performance_data,
            "summary": {
                "totalScore": _number(self.total_score),
                "totalMaxScore": _number(self.total_max_score),
                "completionRate": self.completion_rate,
            },
        }


def summarize_topics(attempts: Sequence[Attempt]) -> list[dict[str, Any]]:
    """Bucket attempts by quiz topic, best average first.

    An attempt tagged with several topics adds its full score to each of them.
    """

    stats: dict[str, TopicStats] = {}
    for attempt in attempts:
        for topic in attempt.quiz.metadata.effective_topics():
            bucket = stats.get(topic)
            if bucket is None:
                bucket = stats[topic] = TopicStats(topic)
            bucket.add(attempt)
    rows = [bucket.to_payload() for bucket in stats.values()]
    rows.sort(key=lambda row: row["avgScore"], reverse=True)
    return rows


def recent_history(attempts: Sequence[Attempt], limit: int = _DEFAULT_RECENT_LIMIT) -> list[dict[str, Any]]:
    return [
        {
            "id": attempt.id,
            "quizTitle": attempt.quiz.title,
            "score": _number(attempt.total_score),
            "maxScore": _number(attempt.max_score),
            "percentage": percentage(attempt.total_score, attempt.max_score),
            "finishedAt": _isoformat(attempt.finished_at),
            "startedAt": _isoformat(attempt.started_at),
        }
        for attempt in attempts[: max(limit, 0)]
    ]


def performance_series(
    attempts: Sequence[Attempt],
    title_chars: int = _DEFAULT_TITLE_CHARS,
) -> list[dict[str, Any]]:
    """Chart points for every attempt, oldest first when given newest-first input."""

    series = [
        {
            "quizTitle": truncate_title(attempt.quiz.title, title_chars),
            "score": _number(attempt.total_score),
            "maxScore": _number(attempt.max_score),
            "percentage": percentage(attempt.total_score, attempt.max_score),
            "date": attempt.finished_at.date().isoformat() if attempt.finished_at else None,
        }
        for attempt in attempts
    ]
    series.reverse()
    return series


class ProgressAggregator:
    """Build progress reports from the completed attempts of a single user."""

    def __init__(
        self,
        store: CompletedAttemptSource,
        *,
        default_user_id: str = "default-user",
        recent_limit: int = _DEFAULT_RECENT_LIMIT,
        title_chars: int = _DEFAULT_TITLE_CHARS,
        metrics: "MetricsRecorder" | None = None,
    ) -> None:
        self._store = store
        self._default_user_id = default_user_id
        self._recent_limit = max(recent_limit, 1)
        self._title_chars = max(title_chars, 1)
        self._metrics = metrics

    def build_report(self, user_id: str | None = None) -> ProgressReport:
        user_id = user_id or self._default_user_id
        timer = self._metrics.track_timing("progress.report_duration") if self._metrics else nullcontext()
        try:
            with timer:
                attempts = [
                    attempt for attempt in self._store.list_completed_attempts(user_id) if attempt.completed
                ]
                report = self._aggregate(user_id, attempts)
        except Exception as exc:
            if self._metrics:
                self._metrics.increment("progress.report_failures")
            raise ProgressReportError(f"Failed to build progress report for {user_id}") from exc

        if self._metrics:
            self._metrics.increment("progress.reports")
        logger.info(
            "progress.report.built user=%s attempts=%s topics=%s avg_score=%s",
            user_id,
            report.total_attempts,
            len(report.topics),
            report.avg_score,
        )
        return report

    def _aggregate(self, user_id: str, attempts: list[Attempt]) -> ProgressReport:
        total_score = sum(attempt.total_score or 0 for attempt in attempts)
        total_max_score = sum(attempt.max_score or 0 for attempt in attempts)
        return ProgressReport(
            user_id=user_id,
            total_attempts=len(attempts),
            avg_score=percentage(total_score, total_max_score),
            total_score=total_score,
            total_max_score=total_max_score,
            topics=summarize_topics(attempts),
            recent_attempts=recent_history(attempts, self._recent_limit),
            performance_data=performance_series(attempts, self._title_chars),
        )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _number(value: float | None) -> float | int | None:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


__all__ = [
    "ProgressAggregator",
    "ProgressReport",
    "ProgressReportError",
    "TopicStats",
    "percentage",
    "performance_series",
    "recent_history",
    "summarize_topics",
    "truncate_title",
]
