from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from quizlens.models import Attempt, QuizMetadata, QuizRef
from quizlens.store import AttemptStore

BASE_TIME = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_attempt(
    attempt_id: str,
    *,
    score: float | None,
    max_score: float | None,
    topics: list[str] | None = None,
    title: str = "Sample Quiz",
    day: int = 0,
    finished: bool = True,
    user_id: str = "default-user",
) -> Attempt:
    started = BASE_TIME + timedelta(days=day)
    return Attempt(
        id=attempt_id,
        user_id=user_id,
        quiz=QuizRef(id=f"quiz-{attempt_id}", title=title, metadata=QuizMetadata(topics=list(topics or []))),
        total_score=score,
        max_score=max_score,
        started_at=started,
        finished_at=started + timedelta(minutes=15) if finished else None,
    )


class StaticAttemptSource:
    """Serves a fixed attempt list, newest first, like the real store."""

    def __init__(self, attempts: list[Attempt]) -> None:
        self._attempts = sorted(
            attempts,
            key=lambda item: item.finished_at or item.started_at,
            reverse=True,
        )
        self.requested: list[str] = []

    def list_completed_attempts(self, user_id: str) -> list[Attempt]:
        self.requested.append(user_id)
        return list(self._attempts)


class FailingAttemptSource:
    def list_completed_attempts(self, user_id: str) -> list[Attempt]:
        raise ConnectionError("database unreachable")


@pytest.fixture()
def store(tmp_path: Path) -> AttemptStore:
    return AttemptStore(tmp_path / "quizlens.sqlite")


def record_attempt(
    store: AttemptStore,
    quiz_id: str,
    *,
    score: float | None,
    max_score: float | None,
    finished_at: datetime | None,
    user_id: str = "default-user",
) -> str:
    started = (finished_at or BASE_TIME) - timedelta(minutes=10)
    attempt_id = store.start_attempt(user_id, quiz_id, started_at=started)
    if finished_at is not None:
        store.finish_attempt(attempt_id, total_score=score, max_score=max_score, finished_at=finished_at)
    return attempt_id
