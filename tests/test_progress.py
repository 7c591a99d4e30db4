from __future__ import annotations

import pytest

from quizlens.observability import MetricsRecorder
from quizlens.progress import (
    ProgressAggregator,
    ProgressReportError,
    percentage,
    summarize_topics,
    truncate_title,
)

from conftest import FailingAttemptSource, StaticAttemptSource, make_attempt


def _example_attempts():
    return [
        make_attempt("a1", score=8, max_score=10, topics=["Math"], day=0),
        make_attempt("a2", score=6, max_score=10, topics=["Math", "Science"], day=1),
        make_attempt("a3", score=10, max_score=10, topics=[], day=2),
    ]


def test_report_matches_worked_example() -> None:
    aggregator = ProgressAggregator(StaticAttemptSource(_example_attempts()))

    payload = aggregator.build_report("default-user").to_payload()

    assert payload["totalAttempts"] == 3
    assert payload["avgScore"] == 80
    topics = {row["topic"]: row for row in payload["topics"]}
    assert topics["Math"]["avgScore"] == 70
    assert topics["Math"]["attempts"] == 2
    assert topics["Math"]["totalScore"] == 14
    assert topics["Math"]["maxScore"] == 20
    assert topics["Science"]["avgScore"] == 60
    assert topics["Science"]["attempts"] == 1
    assert topics["General"]["avgScore"] == 100
    assert topics["General"]["attempts"] == 1
    assert [row["topic"] for row in payload["topics"]] == ["General", "Math", "Science"]
    assert payload["summary"] == {"totalScore": 24, "totalMaxScore": 30, "completionRate": 100}


def test_multi_topic_attempt_counts_in_full_for_each_topic() -> None:
    attempts = [make_attempt("a1", score=6, max_score=10, topics=["Math", "Science"])]

    rows = summarize_topics(attempts)

    assert [row["topic"] for row in rows] == ["Math", "Science"]
    for row in rows:
        assert row["totalScore"] == 6
        assert row["maxScore"] == 10
        assert row["attempts"] == 1


def test_single_topic_sums_match_global_totals() -> None:
    attempts = [
        make_attempt("a1", score=3, max_score=5, topics=["History"], day=0),
        make_attempt("a2", score=7, max_score=9, topics=["Art"], day=1),
        make_attempt("a3", score=2, max_score=4, topics=None, day=2),
    ]
    report = ProgressAggregator(StaticAttemptSource(attempts)).build_report()

    assert sum(row["totalScore"] for row in report.topics) == report.to_payload()["summary"]["totalScore"]
    assert sum(row["maxScore"] for row in report.topics) == report.to_payload()["summary"]["totalMaxScore"]


def test_topics_sorted_non_increasing_with_stable_ties() -> None:
    attempts = [
        make_attempt("a1", score=5, max_score=10, topics=["Zoology"], day=3),
        make_attempt("a2", score=9, max_score=10, topics=["Chemistry"], day=2),
        make_attempt("a3", score=1, max_score=2, topics=["Algebra"], day=1),
    ]
    report = ProgressAggregator(StaticAttemptSource(attempts)).build_report()

    scores = [row["avgScore"] for row in report.topics]
    assert scores == sorted(scores, reverse=True)
    # Zoology is encountered first (newest attempt) and ties with Algebra at 50.
    assert [row["topic"] for row in report.topics] == ["Chemistry", "Zoology", "Algebra"]


def test_recent_and_performance_lengths() -> None:
    attempts = [make_attempt(f"a{i}", score=i, max_score=12, day=i) for i in range(12)]
    report = ProgressAggregator(StaticAttemptSource(attempts)).build_report()

    assert len(report.recent_attempts) == 10
    assert len(report.performance_data) == 12
    assert report.recent_attempts[0]["id"] == "a11"
    assert report.recent_attempts[-1]["id"] == "a2"


def test_performance_series_is_oldest_first() -> None:
    attempts = [make_attempt(f"a{i}", score=1, max_score=2, day=i) for i in range(4)]
    report = ProgressAggregator(StaticAttemptSource(attempts)).build_report()

    dates = [point["date"] for point in report.performance_data]
    assert dates == ["2024-03-01", "2024-03-02", "2024-03-03", "2024-03-04"]


def test_recent_attempt_fields() -> None:
    attempt = make_attempt("only", score=7, max_score=8, title="Photosynthesis")
    report = ProgressAggregator(StaticAttemptSource([attempt])).build_report()

    (recent,) = report.recent_attempts
    assert recent == {
        "id": "only",
        "quizTitle": "Photosynthesis",
        "score": 7,
        "maxScore": 8,
        "percentage": 88,
        "finishedAt": attempt.finished_at.isoformat(),
        "startedAt": attempt.started_at.isoformat(),
    }


def test_zero_max_score_yields_zero_percentage() -> None:
    attempts = [make_attempt("a1", score=0, max_score=0, topics=["Empty"])]
    report = ProgressAggregator(StaticAttemptSource(attempts)).build_report()

    assert report.avg_score == 0
    assert report.recent_attempts[0]["percentage"] == 0
    assert report.performance_data[0]["percentage"] == 0
    assert report.topics[0]["avgScore"] == 0


def test_null_scores_count_as_zero() -> None:
    attempts = [
        make_attempt("a1", score=None, max_score=10, day=0),
        make_attempt("a2", score=5, max_score=None, day=1),
    ]
    payload = ProgressAggregator(StaticAttemptSource(attempts)).build_report().to_payload()

    assert payload["summary"]["totalScore"] == 5
    assert payload["summary"]["totalMaxScore"] == 10
    assert payload["avgScore"] == 50
    by_id = {row["id"]: row for row in payload["recentAttempts"]}
    assert by_id["a1"]["score"] is None
    assert by_id["a1"]["percentage"] == 0
    assert by_id["a2"]["percentage"] == 0


def test_unfinished_attempts_are_ignored() -> None:
    attempts = [
        make_attempt("done", score=4, max_score=5, day=0),
        make_attempt("open", score=5, max_score=5, day=1, finished=False),
    ]
    report = ProgressAggregator(StaticAttemptSource(attempts)).build_report()

    assert report.total_attempts == 1
    assert [item["id"] for item in report.recent_attempts] == ["done"]


def test_empty_history_report() -> None:
    payload = ProgressAggregator(StaticAttemptSource([])).build_report().to_payload()

    assert payload == {
        "totalAttempts": 0,
        "avgScore": 0,
        "topics": [],
        "recentAttempts": [],
        "performanceData": [],
        "summary": {"totalScore": 0, "totalMaxScore": 0, "completionRate": 0},
    }


def test_default_user_is_used_when_missing() -> None:
    source = StaticAttemptSource([])
    aggregator = ProgressAggregator(source, default_user_id="demo")

    aggregator.build_report()
    aggregator.build_report("learner-7")

    assert source.requested == ["demo", "learner-7"]


def test_source_failure_raises_report_error() -> None:
    aggregator = ProgressAggregator(FailingAttemptSource())

    with pytest.raises(ProgressReportError) as excinfo:
        aggregator.build_report("someone")

    assert isinstance(excinfo.value.__cause__, ConnectionError)


def test_report_metrics_emitted(caplog) -> None:
    metrics = MetricsRecorder(enabled=True, namespace="quizlens.test")
    aggregator = ProgressAggregator(StaticAttemptSource(_example_attempts()), metrics=metrics)

    with caplog.at_level("INFO", logger="quizlens.metrics"):
        aggregator.build_report()

    messages = [record.getMessage() for record in caplog.records]
    assert any(message.startswith("quizlens.test.progress.reports") for message in messages)
    assert any(message.startswith("quizlens.test.progress.report_duration") for message in messages)


def test_report_failure_metrics_still_time_the_attempt(caplog) -> None:
    metrics = MetricsRecorder(enabled=True, namespace="quizlens.test")
    aggregator = ProgressAggregator(FailingAttemptSource(), metrics=metrics)

    with caplog.at_level("INFO", logger="quizlens.metrics"):
        with pytest.raises(ProgressReportError):
            aggregator.build_report("someone")

    messages = [record.getMessage() for record in caplog.records]
    assert any(message.startswith("quizlens.test.progress.report_failures") for message in messages)
    assert any(message.startswith("quizlens.test.progress.report_duration") for message in messages)
    assert not any(message.startswith("quizlens.test.progress.reports ") for message in messages)


@pytest.mark.parametrize(
    ("score", "max_score", "expected"),
    [
        (24, 30, 80),
        (1, 8, 13),
        (1, 3, 33),
        (2, 3, 67),
        (5, 0, 0),
        (None, 4, 0),
        (3, None, 0),
    ],
)
def test_percentage_rounding(score, max_score, expected) -> None:
    assert percentage(score, max_score) == expected


def test_truncate_title() -> None:
    assert truncate_title("Short title") == "Short title"
    assert truncate_title("x" * 20) == "x" * 20
    assert truncate_title("Introduction to Thermodynamics") == "Introduction to Ther..."
