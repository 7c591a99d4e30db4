"""Seed the Quizlens database with demo quizzes and completed attempts."""

from __future__ import annotations

import argparse
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import yaml

from quizlens import AttemptStore, Settings

_DEMO_DATA: dict[str, Any] = {
    "quizzes": [
        {
            "key": "cells",
            "title": "Cell Biology Fundamentals",
            "metadata": {"topics": ["Biology"]},
            "questions": [
                {
                    "type": "mcq",
                    "stem": "Which organelle produces most of the cell's ATP?",
                    "options": ["Nucleus", "Mitochondrion", "Ribosome", "Golgi apparatus"],
                    "correct_index": 1,
                    "max_score": 1,
                    "source": "biology.pdf p.12",
                },
                {
                    "type": "saq",
                    "stem": "Describe the role of the cell membrane.",
                    "keywords": ["barrier", "transport", "phospholipid"],
                    "max_score": 3,
                    "source": "biology.pdf p.8",
                },
            ],
        },
        {
            "key": "kinematics",
            "title": "Kinematics and the Mathematics of Motion",
            "metadata": {"topics": ["Physics", "Math"]},
            "questions": [
                {
                    "type": "mcq",
                    "stem": "What is the derivative of position with respect to time?",
                    "options": ["Acceleration", "Velocity", "Jerk"],
                    "correct_index": 1,
                    "max_score": 2,
                    "source": "physics.pdf p.3",
                },
            ],
        },
        {
            "key": "essay",
            "title": "Reading Comprehension",
            "metadata": {},
            "questions": [
                {
                    "type": "laq",
                    "stem": "Summarise the author's main argument.",
                    "keywords": ["argument", "evidence"],
                    "max_score": 5,
                },
            ],
        },
    ],
    "attempts": [
        {"quiz": "cells", "score": 3, "max_score": 4, "days_ago": 6},
        {"quiz": "kinematics", "score": 2, "max_score": 2, "days_ago": 4},
        {"quiz": "essay", "score": 2, "max_score": 5, "days_ago": 2},
        {"quiz": "cells", "score": 4, "max_score": 4, "days_ago": 1},
    ],
}


def load_seed_data(path: Path | None) -> dict[str, Any]:
    if path is None:
        return _DEMO_DATA
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise SystemExit(f"[seed] {path} must contain a mapping with 'quizzes' and 'attempts'.")
    return data


def main(data_file: Path | None, user_id: str | None) -> None:
    settings = Settings.from_env()
    store = AttemptStore(settings.database_file())
    user = user_id or settings.default_user_id
    print(f"[seed] Using database {store.path} for user '{user}'.")

    data = load_seed_data(data_file)
    quiz_ids: dict[str, str] = {}
    for item in data.get("quizzes") or []:
        quiz = store.create_quiz(
            str(item["title"]),
            item.get("questions") or [],
            item.get("metadata"),
        )
        quiz_ids[str(item.get("key") or item["title"])] = quiz.id
        print(f"[seed] Created quiz '{quiz.title}' with {len(quiz.questions)} questions.")

    now = datetime.now(timezone.utc)
    created = 0
    for item in data.get("attempts") or []:
        quiz_id = quiz_ids.get(str(item["quiz"]))
        if quiz_id is None:
            print(f"[seed] Skipping attempt for unknown quiz '{item['quiz']}'.")
            continue
        finished_at = now - timedelta(days=float(item.get("days_ago", 0)))
        attempt_id = store.start_attempt(user, quiz_id, started_at=finished_at - timedelta(minutes=10))
        store.finish_attempt(
            attempt_id,
            total_score=item.get("score"),
            max_score=item.get("max_score"),
            finished_at=finished_at,
        )
        created += 1

    print(f"[seed] Recorded {created} completed attempts.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--data",
        type=Path,
        default=None,
        help="YAML file with 'quizzes' and 'attempts' (defaults to a built-in demo set)",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="User id that owns the seeded attempts (defaults to DEFAULT_USER_ID)",
    )
    return parser.parse_args()


if __name__ == "__main__":
    args = parse_args()
    main(args.data, args.user)
