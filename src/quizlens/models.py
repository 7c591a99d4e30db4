"""Quiz, question and attempt records read from the attempt store."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

GENERAL_TOPIC = "General"
QUESTION_TYPES = ("mcq", "saq", "laq")


class MetadataError(ValueError):
    """Raised when stored quiz metadata does not have the expected shape."""


@dataclass(slots=True)
class QuizMetadata:
    """Validated quiz metadata; unknown keys are preserved in ``extra``."""

    topics: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | None) -> "QuizMetadata":
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise MetadataError(f"Quiz metadata must be an object, got {type(raw).__name__}")
        extra = {str(key): value for key, value in raw.items() if key != "topics"}
        topics = raw.get("topics")
        if topics is None:
            return cls(extra=extra)
        if not isinstance(topics, list) or not all(isinstance(item, str) for item in topics):
            raise MetadataError("Quiz metadata 'topics' must be a list of strings")
        return cls(topics=list(topics), extra=extra)

    def effective_topics(self) -> list[str]:
        """Topic labels an attempt on this quiz counts towards."""

        return list(self.topics) if self.topics else [GENERAL_TOPIC]

    def to_dict(self) -> dict[str, Any]:
        payload = dict(self.extra)
        if self.topics:
            payload["topics"] = list(self.topics)
        return payload


@dataclass(slots=True)
class McqOption:
    index: int
    text: str
    is_correct: bool = False


@dataclass(slots=True)
class Question:
    """A single quiz question together with its grading guidance."""

    id: str
    quiz_id: str
    qtype: str
    stem: str
    max_score: float
    source: str | None = None
    explanation: str | None = None
    expected_answer: str | None = None
    keywords: list[str] = field(default_factory=list)
    options: list[McqOption] = field(default_factory=list)

    def correct_option(self) -> McqOption | None:
        for option in self.options:
            if option.is_correct:
                return option
        return None


@dataclass(slots=True)
class Quiz:
    id: str
    title: str
    metadata: QuizMetadata
    created_at: datetime
    num_mcq: int = 0
    num_saq: int = 0
    num_laq: int = 0
    questions: list[Question] = field(default_factory=list)

    def question(self, question_id: str) -> Question | None:
        for question in self.questions:
            if question.id == question_id:
                return question
        return None


@dataclass(slots=True)
class QuizSummary:
    """Catalogue entry for a quiz with question/attempt counts."""

    quiz: Quiz
    question_count: int
    attempt_count: int


@dataclass(slots=True)
class QuizRef:
    """The quiz fields an attempt listing carries."""

    id: str
    title: str
    metadata: QuizMetadata


@dataclass(slots=True)
class Answer:
    question_id: str
    stem: str
    source: str | None
    qtype: str
    answer: dict[str, Any]
    score: float | None
    max_score: float | None
    feedback: str | None = None


@dataclass(slots=True)
class Attempt:
    """One user's run through a quiz; ``finished_at`` is ``None`` while in progress."""

    id: str
    user_id: str
    quiz: QuizRef
    total_score: float | None
    max_score: float | None
    started_at: datetime
    finished_at: datetime | None
    answers: list[Answer] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.finished_at is not None


__all__ = [
    "Answer",
    "Attempt",
    "GENERAL_TOPIC",
    "McqOption",
    "MetadataError",
    "QUESTION_TYPES",
    "Question",
    "Quiz",
    "QuizMetadata",
    "QuizRef",
    "QuizSummary",
]
