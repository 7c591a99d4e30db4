"""FastAPI application setup for the Quizlens service."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, Response

from .config import Settings
from .models import Quiz
from .observability import MetricsRecorder
from .progress import ProgressAggregator, ProgressReportError
from .store import AttemptStore
from .submissions import QuizNotFoundError, QuizSubmissionService

logger = logging.getLogger(__name__)

_PROGRESS_FAILURE = "Failed to fetch progress data"
_USER_REQUIRED = "userId is required"

_LOGGING_CONFIGURED = False


def _ensure_logging() -> None:
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    quizlens_logger = logging.getLogger("quizlens")
    uvicorn_logger = logging.getLogger("uvicorn.error")

    handlers = list(uvicorn_logger.handlers)
    if handlers:
        quizlens_logger.handlers = []
        for handler in handlers:
            quizlens_logger.addHandler(handler)
    else:
        handler = logging.StreamHandler()
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s"))
        quizlens_logger.addHandler(handler)

    if quizlens_logger.level == logging.NOTSET or quizlens_logger.level > logging.INFO:
        quizlens_logger.setLevel(logging.INFO)
    _LOGGING_CONFIGURED = True


class ApplicationState:
    """Container for runtime dependencies used by the FastAPI app."""

    def __init__(
        self,
        *,
        settings: Settings,
        store: AttemptStore,
        aggregator: ProgressAggregator,
        submissions: QuizSubmissionService,
        metrics: MetricsRecorder | None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.aggregator = aggregator
        self.submissions = submissions
        self.metrics = metrics


def create_app(
    *,
    settings: Settings | None = None,
    store: AttemptStore | None = None,
    aggregator: ProgressAggregator | None = None,
    submissions: QuizSubmissionService | None = None,
    metrics: MetricsRecorder | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""

    _ensure_logging()

    settings = settings or Settings.from_env()
    metrics = metrics or settings.build_metrics_recorder()
    store = store or AttemptStore(settings.database_file())
    aggregator = aggregator or ProgressAggregator(
        store,
        default_user_id=settings.default_user_id,
        recent_limit=settings.progress_recent_limit,
        title_chars=settings.progress_chart_title_chars,
        metrics=metrics,
    )
    submissions = submissions or QuizSubmissionService(store, metrics=metrics)
    logger.info(
        "app.start settings_loaded database=%s default_user=%s require_user=%s",
        settings.database_path,
        settings.default_user_id,
        settings.require_user_id,
    )

    app = FastAPI()
    app.state.services = ApplicationState(
        settings=settings,
        store=store,
        aggregator=aggregator,
        submissions=submissions,
        metrics=metrics,
    )

    def get_state(request: Request) -> ApplicationState:
        return request.app.state.services

    def get_settings_dependency(request: Request) -> Settings:
        return get_state(request).settings

    def get_store(request: Request) -> AttemptStore:
        return get_state(request).store

    def get_aggregator(request: Request) -> ProgressAggregator:
        return get_state(request).aggregator

    def get_submissions(request: Request) -> QuizSubmissionService:
        return get_state(request).submissions

    def get_metrics(request: Request) -> MetricsRecorder | None:
        return get_state(request).metrics

    @app.get("/api/progress", response_class=JSONResponse)
    @app.get("/progress", response_class=JSONResponse, include_in_schema=False)
    async def progress_report(
        user_id: str | None = Query(None, alias="userId"),
        settings_inst: Settings = Depends(get_settings_dependency),
        aggregator_inst: ProgressAggregator = Depends(get_aggregator),
    ) -> JSONResponse:
        resolved = settings_inst.resolve_user_id(user_id)
        if resolved is None:
            return JSONResponse({"success": False, "error": _USER_REQUIRED}, status_code=400)
        try:
            report = aggregator_inst.build_report(resolved)
        except ProgressReportError as exc:
            logger.exception("progress.endpoint.failed user=%s error=%s", resolved, exc.__cause__ or exc)
            return JSONResponse({"success": False, "error": _PROGRESS_FAILURE}, status_code=500)
        return JSONResponse({"success": True, "data": report.to_payload()})

    @app.get("/api/progress/snapshot", response_class=JSONResponse)
    async def progress_snapshot(
        user_id: str | None = Query(None, alias="userId"),
        settings_inst: Settings = Depends(get_settings_dependency),
        submissions_inst: QuizSubmissionService = Depends(get_submissions),
    ) -> JSONResponse:
        resolved = settings_inst.resolve_user_id(user_id)
        if resolved is None:
            return JSONResponse({"success": False, "error": _USER_REQUIRED}, status_code=400)
        try:
            snapshot = submissions_inst.snapshot(resolved)
        except Exception as exc:
            logger.exception("progress.snapshot.failed user=%s error=%s", resolved, exc)
            return JSONResponse({"success": False, "error": _PROGRESS_FAILURE}, status_code=500)
        return JSONResponse({"success": True, "data": snapshot})

    @app.get("/api/quizzes", response_class=JSONResponse)
    async def list_quizzes(store_inst: AttemptStore = Depends(get_store)) -> JSONResponse:
        try:
            summaries = store_inst.list_quizzes()
        except Exception as exc:
            logger.exception("quizzes.list.failed error=%s", exc)
            return JSONResponse(
                {"error": "Failed to fetch quizzes", "details": str(exc)},
                status_code=500,
            )
        quizzes = [
            {
                "id": summary.quiz.id,
                "title": summary.quiz.title,
                "createdAt": summary.quiz.created_at.isoformat(),
                "questionCount": summary.question_count,
                "attemptCount": summary.attempt_count,
                "numMcq": summary.quiz.num_mcq,
                "numSaq": summary.quiz.num_saq,
                "numLaq": summary.quiz.num_laq,
                "metadata": summary.quiz.metadata.to_dict(),
            }
            for summary in summaries
        ]
        return JSONResponse({"success": True, "quizzes": quizzes})

    @app.get("/api/get-quiz", response_class=JSONResponse)
    async def get_quiz(
        quiz_id: str | None = Query(None, alias="quizId"),
        store_inst: AttemptStore = Depends(get_store),
    ) -> JSONResponse:
        if not (quiz_id or "").strip():
            return JSONResponse({"error": "Quiz ID is required"}, status_code=400)
        try:
            quiz = store_inst.get_quiz(quiz_id.strip())
        except Exception as exc:
            logger.exception("quiz.fetch.failed quiz=%s error=%s", quiz_id, exc)
            return JSONResponse({"error": "Failed to fetch quiz", "details": str(exc)}, status_code=500)
        if quiz is None:
            return JSONResponse({"error": "Quiz not found"}, status_code=404)
        return JSONResponse({"success": True, "quiz": _quiz_to_dict(quiz)})

    @app.post("/api/submit-quiz", response_class=JSONResponse)
    async def submit_quiz(
        request: Request,
        settings_inst: Settings = Depends(get_settings_dependency),
        submissions_inst: QuizSubmissionService = Depends(get_submissions),
    ) -> JSONResponse:
        try:
            payload = await request.json()
        except ValueError as exc:
            logger.warning("quiz.submit.invalid_body error=%s", exc)
            return JSONResponse({"error": "Invalid payload"}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({"error": "Invalid payload"}, status_code=400)
        quiz_id = str(payload.get("quizId") or "").strip()
        if not quiz_id:
            return JSONResponse({"error": "Quiz ID is required"}, status_code=400)
        user_id = settings_inst.resolve_user_id(str(payload.get("userId") or ""))
        if user_id is None:
            return JSONResponse({"error": _USER_REQUIRED}, status_code=400)
        answers = payload.get("answers") or []
        if not isinstance(answers, list) or not all(isinstance(item, dict) for item in answers):
            return JSONResponse({"error": "answers must be a list of objects"}, status_code=400)

        logger.info("quiz.submit.request quiz=%s user=%s answers=%s", quiz_id, user_id, len(answers))
        try:
            result = submissions_inst.submit(quiz_id=quiz_id, user_id=user_id, answers=answers)
        except QuizNotFoundError:
            return JSONResponse({"error": "Quiz not found"}, status_code=404)
        except Exception as exc:
            logger.exception("quiz.submit.failed quiz=%s user=%s error=%s", quiz_id, user_id, exc)
            return JSONResponse({"error": "Failed to submit quiz", "details": str(exc)}, status_code=500)
        return JSONResponse(result.to_payload())

    @app.get("/metrics")
    async def metrics_endpoint(metrics_inst: MetricsRecorder | None = Depends(get_metrics)) -> Response:
        if metrics_inst is None or not metrics_inst.prometheus_enabled:
            raise HTTPException(status_code=404, detail="Metrics export disabled")
        try:
            payload = metrics_inst.render_prometheus()
        except RuntimeError as exc:  # pragma: no cover - defensive guard
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return Response(content=payload, media_type=metrics_inst.prometheus_content_type)

    return app


def _quiz_to_dict(quiz: Quiz) -> dict[str, object]:
    return {
        "id": quiz.id,
        "title": quiz.title,
        "questions": [
            {
                "id": question.id,
                "type": question.qtype,
                "stem": question.stem,
                "maxScore": question.max_score,
                "options": [option.text for option in question.options] if question.qtype == "mcq" else None,
                "explanation": question.explanation,
                "source": question.source,
            }
            for question in quiz.questions
        ],
    }


__all__ = ["create_app", "ApplicationState"]
