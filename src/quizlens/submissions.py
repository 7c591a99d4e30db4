"""Quiz submission handling and the per-user progress snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence, TYPE_CHECKING

from .grading import GradedAnswer, grade_answer
from .progress import percentage
from .store import AttemptStore

if TYPE_CHECKING:  # pragma: no cover - type hints only
    from .observability import MetricsRecorder

logger = logging.getLogger(__name__)


class QuizNotFoundError(LookupError):
    """Raised when a submission references an unknown quiz."""


@dataclass(slots=True)
class SubmissionResult:
    attempt_id: str
    total_score: float
    max_score: float
    per_question: list[GradedAnswer] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "attemptId": self.attempt_id,
            "totalScore": self.total_score,
            "maxScore": self.max_score,
            "percentage": percentage(self.total_score, self.max_score),
            "perQuestion": [item.to_payload() for item in self.per_question],
        }


def empty_snapshot() -> dict[str, Any]:
    return {
        "quizzes": {},
        "overallStats": {"totalQuizzes": 0, "totalAttempts": 0, "averageScore": 0},
    }


def update_snapshot(
    snapshot: Mapping[str, Any] | None,
    *,
    quiz_id: str,
    score: float,
    max_score: float,
    timestamp: datetime,
) -> dict[str, Any]:
    """Fold one finished attempt into a user's progress snapshot.

    ``averageScore`` is the mean of each quiz's best percentage.
    """

    updated = empty_snapshot()
    if snapshot:
        updated["quizzes"] = {key: dict(value) for key, value in (snapshot.get("quizzes") or {}).items()}

    entry = updated["quizzes"].setdefault(
        quiz_id,
        {
            "attempts": 0,
            "totalScore": 0,
            "totalMaxScore": 0,
            "bestScore": 0,
            "bestPercentage": 0,
            "lastAttempt": None,
        },
    )
    entry["attempts"] += 1
    entry["totalScore"] += score
    entry["totalMaxScore"] += max_score
    current = (score / max_score) * 100 if max_score > 0 else 0.0
    if entry["attempts"] == 1 or current > entry["bestPercentage"]:
        entry["bestScore"] = score
        entry["bestPercentage"] = current
    entry["lastAttempt"] = timestamp.isoformat()

    quizzes = list(updated["quizzes"].values())
    updated["overallStats"] = {
        "totalQuizzes": len(quizzes),
        "totalAttempts": sum(item["attempts"] for item in quizzes),
        "averageScore": sum(item["bestPercentage"] for item in quizzes) / len(quizzes),
    }
    return updated


class QuizSubmissionService:
    """Grade a submission, persist the attempt and refresh the user's snapshot."""

    def __init__(self, store: AttemptStore, *, metrics: "MetricsRecorder" | None = None) -> None:
        self._store = store
        self._metrics = metrics

    def submit(
        self,
        *,
        quiz_id: str,
        user_id: str,
        answers: Sequence[Mapping[str, Any]],
    ) -> SubmissionResult:
        quiz = self._store.get_quiz(quiz_id)
        if quiz is None:
            raise QuizNotFoundError(quiz_id)

        attempt_id = self._store.start_attempt(user_id, quiz.id)
        graded: list[GradedAnswer] = []
        for submitted in answers:
            question = quiz.question(str(submitted.get("questionId") or ""))
            if question is None:
                logger.debug(
                    "quiz.submit.unknown_question quiz=%s question=%s",
                    quiz.id,
                    submitted.get("questionId"),
                )
                continue
            result = grade_answer(question, submitted)
            self._store.record_answer(
                attempt_id,
                question_id=result.question_id,
                qtype=result.qtype,
                answer=result.answer,
                score=result.score,
                max_score=result.max_score,
                feedback=result.feedback,
            )
            graded.append(result)

        total_score = sum(item.score for item in graded)
        max_score = sum(item.max_score for item in graded)
        finished_at = datetime.now(timezone.utc)
        self._store.finish_attempt(
            attempt_id,
            total_score=total_score,
            max_score=max_score,
            finished_at=finished_at,
        )
        logger.info(
            "quiz.submit.completed quiz=%s user=%s attempt=%s score=%s max=%s",
            quiz.id,
            user_id,
            attempt_id,
            total_score,
            max_score,
        )
        if self._metrics:
            self._metrics.increment("quiz.submissions")

        try:
            snapshot = update_snapshot(
                self._store.get_user_progress(user_id),
                quiz_id=quiz.id,
                score=total_score,
                max_score=max_score,
                timestamp=finished_at,
            )
            self._store.save_user_progress(user_id, snapshot)
        except Exception as exc:
            logger.exception("quiz.progress.update_failed user=%s error=%s", user_id, exc)

        return SubmissionResult(
            attempt_id=attempt_id,
            total_score=total_score,
            max_score=max_score,
            per_question=graded,
        )

    def snapshot(self, user_id: str) -> dict[str, Any]:
        return self._store.get_user_progress(user_id) or empty_snapshot()


__all__ = [
    "QuizNotFoundError",
    "QuizSubmissionService",
    "SubmissionResult",
    "empty_snapshot",
    "update_snapshot",
]
