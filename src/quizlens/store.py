"""SQLite-backed persistence for quizzes, attempts and user progress snapshots."""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping, Sequence
from uuid import uuid4

from .models import (
    Answer,
    Attempt,
    McqOption,
    MetadataError,
    QUESTION_TYPES,
    Question,
    Quiz,
    QuizMetadata,
    QuizRef,
    QuizSummary,
)

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS quizzes (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        metadata TEXT,
        created_at TEXT NOT NULL,
        num_mcq INTEGER NOT NULL DEFAULT 0,
        num_saq INTEGER NOT NULL DEFAULT 0,
        num_laq INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS questions (
        id TEXT PRIMARY KEY,
        quiz_id TEXT NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        qtype TEXT NOT NULL,
        stem TEXT NOT NULL,
        max_score REAL NOT NULL,
        source TEXT,
        explanation TEXT,
        expected_answer TEXT,
        guidance TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS mcq_options (
        question_id TEXT NOT NULL REFERENCES questions(id) ON DELETE CASCADE,
        option_index INTEGER NOT NULL,
        text TEXT NOT NULL,
        is_correct INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (question_id, option_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS attempts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        quiz_id TEXT NOT NULL REFERENCES quizzes(id) ON DELETE CASCADE,
        total_score REAL,
        max_score REAL,
        started_at TEXT NOT NULL,
        finished_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS attempts_user_finished ON attempts (user_id, finished_at)",
    """
    CREATE TABLE IF NOT EXISTS attempt_answers (
        id TEXT PRIMARY KEY,
        attempt_id TEXT NOT NULL REFERENCES attempts(id) ON DELETE CASCADE,
        position INTEGER NOT NULL,
        question_id TEXT NOT NULL REFERENCES questions(id),
        qtype TEXT NOT NULL,
        answer_json TEXT NOT NULL,
        score REAL,
        max_score REAL,
        feedback TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_progress (
        user_id TEXT PRIMARY KEY,
        progress_json TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


class StoreError(RuntimeError):
    """Raised when the underlying database cannot serve a request."""


class AttemptStore:
    """Relational store for quizzes and the attempts users make on them."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"Unable to open database {self._db_path}: {exc}") from exc
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    # Quizzes -----------------------------------------------------------------

    def create_quiz(
        self,
        title: str,
        questions: Sequence[Mapping[str, Any]],
        metadata: Mapping[str, Any] | None = None,
        *,
        quiz_id: str | None = None,
        created_at: datetime | None = None,
    ) -> Quiz:
        """Persist a quiz with its questions.

        Each question mapping accepts ``type``, ``stem``, ``max_score``, ``source``,
        ``explanation``, ``expected_answer``, ``keywords``, ``options`` (MCQ option
        texts in order) and ``correct_index``.
        """

        quiz_metadata = QuizMetadata.from_raw(metadata)
        quiz_id = quiz_id or uuid4().hex
        created = created_at or _utc_now()
        parsed = [_parse_question(quiz_id, item) for item in questions]
        counts = {qtype: sum(1 for q in parsed if q.qtype == qtype) for qtype in QUESTION_TYPES}

        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO quizzes (id, title, metadata, created_at, num_mcq, num_saq, num_laq)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    quiz_id,
                    title,
                    json.dumps(quiz_metadata.to_dict()),
                    _to_iso(created),
                    counts["mcq"],
                    counts["saq"],
                    counts["laq"],
                ),
            )
            for position, question in enumerate(parsed):
                conn.execute(
                    """
                    INSERT INTO questions (
                        id, quiz_id, position, qtype, stem, max_score,
                        source, explanation, expected_answer, guidance
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        question.id,
                        quiz_id,
                        position,
                        question.qtype,
                        question.stem,
                        question.max_score,
                        question.source,
                        question.explanation,
                        question.expected_answer,
                        json.dumps({"keywords": question.keywords}),
                    ),
                )
                conn.executemany(
                    """
                    INSERT INTO mcq_options (question_id, option_index, text, is_correct)
                    VALUES (?, ?, ?, ?)
                    """,
                    [
                        (question.id, option.index, option.text, int(option.is_correct))
                        for option in question.options
                    ],
                )
        logger.info("quiz.created id=%s title=%s questions=%s", quiz_id, title, len(parsed))
        return Quiz(
            id=quiz_id,
            title=title,
            metadata=quiz_metadata,
            created_at=created,
            num_mcq=counts["mcq"],
            num_saq=counts["saq"],
            num_laq=counts["laq"],
            questions=parsed,
        )

    def get_quiz(self, quiz_id: str) -> Quiz | None:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM quizzes WHERE id = ?", (quiz_id,)).fetchone()
            if row is None:
                return None
            question_rows = conn.execute(
                "SELECT * FROM questions WHERE quiz_id = ? ORDER BY position",
                (quiz_id,),
            ).fetchall()
            option_rows = conn.execute(
                """
                SELECT o.* FROM mcq_options o
                JOIN questions q ON q.id = o.question_id
                WHERE q.quiz_id = ?
                ORDER BY o.question_id, o.option_index
                """,
                (quiz_id,),
            ).fetchall()

        options: dict[str, list[McqOption]] = {}
        for option_row in option_rows:
            options.setdefault(option_row["question_id"], []).append(
                McqOption(
                    index=int(option_row["option_index"]),
                    text=option_row["text"],
                    is_correct=bool(option_row["is_correct"]),
                )
            )
        quiz = _quiz_from_row(row)
        quiz.questions = [
            _question_from_row(question_row, options.get(question_row["id"], []))
            for question_row in question_rows
        ]
        return quiz

    def list_quizzes(self) -> list[QuizSummary]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT z.*,
                    (SELECT COUNT(*) FROM questions q WHERE q.quiz_id = z.id) AS question_count,
                    (SELECT COUNT(*) FROM attempts a WHERE a.quiz_id = z.id) AS attempt_count
                FROM quizzes z
                ORDER BY z.created_at DESC
                """
            ).fetchall()
        return [
            QuizSummary(
                quiz=_quiz_from_row(row),
                question_count=int(row["question_count"]),
                attempt_count=int(row["attempt_count"]),
            )
            for row in rows
        ]

    # Attempts ----------------------------------------------------------------

    def start_attempt(self, user_id: str, quiz_id: str, *, started_at: datetime | None = None) -> str:
        attempt_id = uuid4().hex
        with self._session() as conn:
            conn.execute(
                "INSERT INTO attempts (id, user_id, quiz_id, started_at) VALUES (?, ?, ?, ?)",
                (attempt_id, user_id, quiz_id, _to_iso(started_at or _utc_now())),
            )
        logger.debug("attempt.started id=%s user=%s quiz=%s", attempt_id, user_id, quiz_id)
        return attempt_id

    def record_answer(
        self,
        attempt_id: str,
        *,
        question_id: str,
        qtype: str,
        answer: Mapping[str, Any],
        score: float | None,
        max_score: float | None,
        feedback: str | None = None,
    ) -> None:
        with self._session() as conn:
            position = conn.execute(
                "SELECT COUNT(*) FROM attempt_answers WHERE attempt_id = ?",
                (attempt_id,),
            ).fetchone()[0]
            conn.execute(
                """
                INSERT INTO attempt_answers (
                    id, attempt_id, position, question_id, qtype, answer_json, score, max_score, feedback
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    uuid4().hex,
                    attempt_id,
                    position,
                    question_id,
                    qtype,
                    json.dumps(dict(answer)),
                    score,
                    max_score,
                    feedback,
                ),
            )

    def finish_attempt(
        self,
        attempt_id: str,
        *,
        total_score: float | None,
        max_score: float | None,
        finished_at: datetime | None = None,
    ) -> None:
        with self._session() as conn:
            cursor = conn.execute(
                "UPDATE attempts SET total_score = ?, max_score = ?, finished_at = ? WHERE id = ?",
                (total_score, max_score, _to_iso(finished_at or _utc_now()), attempt_id),
            )
            if cursor.rowcount == 0:
                raise StoreError(f"Attempt {attempt_id} does not exist")
        logger.debug("attempt.finished id=%s score=%s max=%s", attempt_id, total_score, max_score)

    def list_completed_attempts(self, user_id: str) -> list[Attempt]:
        """Return the user's finished attempts, newest ``finished_at`` first."""

        with self._session() as conn:
            attempt_rows = conn.execute(
                """
                SELECT a.*, z.title AS quiz_title, z.metadata AS quiz_metadata
                FROM attempts a
                JOIN quizzes z ON z.id = a.quiz_id
                WHERE a.user_id = ? AND a.finished_at IS NOT NULL
                ORDER BY a.finished_at DESC, a.started_at DESC, a.id
                """,
                (user_id,),
            ).fetchall()
            answer_rows = conn.execute(
                """
                SELECT aa.*, q.stem AS question_stem, q.source AS question_source
                FROM attempt_answers aa
                JOIN attempts a ON a.id = aa.attempt_id
                JOIN questions q ON q.id = aa.question_id
                WHERE a.user_id = ? AND a.finished_at IS NOT NULL
                ORDER BY aa.attempt_id, aa.position
                """,
                (user_id,),
            ).fetchall()

        answers: dict[str, list[Answer]] = {}
        for row in answer_rows:
            answers.setdefault(row["attempt_id"], []).append(
                Answer(
                    question_id=row["question_id"],
                    stem=row["question_stem"],
                    source=row["question_source"],
                    qtype=row["qtype"],
                    answer=json.loads(row["answer_json"] or "{}"),
                    score=row["score"],
                    max_score=row["max_score"],
                    feedback=row["feedback"],
                )
            )

        attempts: list[Attempt] = []
        for row in attempt_rows:
            attempts.append(
                Attempt(
                    id=row["id"],
                    user_id=row["user_id"],
                    quiz=QuizRef(
                        id=row["quiz_id"],
                        title=row["quiz_title"],
                        metadata=_decode_metadata(row["quiz_metadata"]),
                    ),
                    total_score=row["total_score"],
                    max_score=row["max_score"],
                    started_at=_from_iso(row["started_at"]),
                    finished_at=_from_iso(row["finished_at"]),
                    answers=answers.get(row["id"], []),
                )
            )
        return attempts

    # User progress snapshots -------------------------------------------------

    def get_user_progress(self, user_id: str) -> dict[str, Any] | None:
        with self._session() as conn:
            row = conn.execute(
                "SELECT progress_json FROM user_progress WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return json.loads(row["progress_json"])

    def save_user_progress(self, user_id: str, progress: Mapping[str, Any]) -> None:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO user_progress (user_id, progress_json, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    progress_json = excluded.progress_json,
                    updated_at = excluded.updated_at
                """,
                (user_id, json.dumps(dict(progress)), _to_iso(_utc_now())),
            )


def _parse_question(quiz_id: str, data: Mapping[str, Any]) -> Question:
    qtype = str(data.get("type") or data.get("qtype") or "").strip().lower()
    if qtype not in QUESTION_TYPES:
        raise ValueError(f"Unsupported question type: {qtype!r}")
    stem = str(data.get("stem") or "").strip()
    if not stem:
        raise ValueError("Question stem is required")
    question_id = str(data.get("id") or uuid4().hex)
    keywords = data.get("keywords") or []
    if isinstance(keywords, str):
        keywords = [keywords]
    options: list[McqOption] = []
    if qtype == "mcq":
        correct_index = data.get("correct_index")
        option_texts = data.get("options") or []
        if len(option_texts) < 2:
            raise ValueError("Multiple-choice questions need at least two options")
        options = [
            McqOption(index=index, text=str(text), is_correct=index == correct_index)
            for index, text in enumerate(option_texts)
        ]
    return Question(
        id=question_id,
        quiz_id=quiz_id,
        qtype=qtype,
        stem=stem,
        max_score=float(data.get("max_score", 1)),
        source=data.get("source"),
        explanation=data.get("explanation"),
        expected_answer=data.get("expected_answer"),
        keywords=[str(item).strip() for item in keywords if str(item).strip()],
        options=options,
    )


def _quiz_from_row(row: sqlite3.Row) -> Quiz:
    return Quiz(
        id=row["id"],
        title=row["title"],
        metadata=_decode_metadata(row["metadata"]),
        created_at=_from_iso(row["created_at"]),
        num_mcq=int(row["num_mcq"]),
        num_saq=int(row["num_saq"]),
        num_laq=int(row["num_laq"]),
    )


def _question_from_row(row: sqlite3.Row, options: list[McqOption]) -> Question:
    guidance = json.loads(row["guidance"] or "{}")
    return Question(
        id=row["id"],
        quiz_id=row["quiz_id"],
        qtype=row["qtype"],
        stem=row["stem"],
        max_score=row["max_score"],
        source=row["source"],
        explanation=row["explanation"],
        expected_answer=row["expected_answer"],
        keywords=list(guidance.get("keywords") or []),
        options=options,
    )


def _decode_metadata(raw: str | None) -> QuizMetadata:
    if not raw:
        return QuizMetadata()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MetadataError(f"Quiz metadata is not valid JSON: {exc}") from exc
    return QuizMetadata.from_raw(data)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


__all__ = ["AttemptStore", "StoreError"]
