"""Deterministic grading for submitted quiz answers."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Mapping

from .models import Question


@dataclass(slots=True)
class GradedAnswer:
    question_id: str
    qtype: str
    answer: dict[str, Any]
    score: float
    max_score: float
    feedback: str

    def to_payload(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "score": self.score,
            "maxScore": self.max_score,
            "feedback": self.feedback,
        }


def grade_answer(question: Question, submitted: Mapping[str, Any]) -> GradedAnswer:
    """Score one submitted answer against its question."""

    if question.qtype == "mcq":
        selected = _coerce_index(submitted.get("selectedIndex"))
        score, feedback = grade_mcq(question, selected)
        answer: dict[str, Any] = {"selectedIndex": selected}
    else:
        text = str(submitted.get("text") or "")
        score = keyword_score(question, text)
        feedback = f"Keyword-based grading: {_format_number(score)}/{_format_number(question.max_score)}"
        answer = {"text": text}
    return GradedAnswer(
        question_id=question.id,
        qtype=question.qtype,
        answer=answer,
        score=score,
        max_score=question.max_score,
        feedback=feedback,
    )


def grade_mcq(question: Question, selected_index: int | None) -> tuple[float, str]:
    correct = question.correct_option()
    if correct is not None and selected_index == correct.index:
        return question.max_score, "Correct!"
    if question.explanation:
        return 0, f"Incorrect. {question.explanation}"
    reference = str(correct.index + 1) if correct is not None else "unknown"
    return 0, f"Incorrect. The correct answer was option {reference}"


def keyword_score(question: Question, text: str) -> int:
    """Award marks in proportion to the guidance keywords found in ``text``."""

    lowered = text.lower()
    matches = sum(1 for keyword in question.keywords if keyword.lower() in lowered)
    ratio = matches / max(1, len(question.keywords))
    return int(math.floor(ratio * question.max_score + 0.5))


def _coerce_index(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


__all__ = ["GradedAnswer", "grade_answer", "grade_mcq", "keyword_score"]
