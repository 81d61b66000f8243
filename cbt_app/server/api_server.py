"""FastAPI server that exposes the admin and student endpoints."""

from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from threading import Event, Thread

from fastapi import Body, Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import Field
import uvicorn

from cbt_app.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from cbt_app.constants.exam_constants import DEFAULT_EXAM_DURATION_MINUTES, DEFAULT_PASSING_SCORE
from cbt_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from cbt_app.core.cbt_manager import CbtManager
from cbt_app.core.errors import CbtError
from cbt_app.core.models import ExamSession
from cbt_app.core.records import CamelModel, ExamSessionView, to_record
from cbt_app.core.services.results_summary import DashboardSummary

logger = logging.getLogger(__name__)

_EXPIRY_SWEEP_INTERVAL_SECONDS = 30.0


class QuestionPayload(CamelModel):
    """Payload schema for authoring a question."""

    question_text: str
    question_type: str
    subject: str
    class_level: str
    difficulty: str
    correct_answer: str
    points: int = 1
    options: list[str] | None = None


class ExamPayload(CamelModel):
    """Payload schema for creating an exam."""

    title: str
    subject: str
    class_level: str
    duration: int = DEFAULT_EXAM_DURATION_MINUTES
    passing_score: int = DEFAULT_PASSING_SCORE
    description: str | None = None
    question_ids: list[str] | None = None
    number_of_questions_to_display: int | None = None
    assign_random_questions: bool = False
    is_active: bool = True


class ExamPatchPayload(CamelModel):
    """Partial exam update; only the provided fields change."""

    title: str | None = None
    subject: str | None = None
    class_level: str | None = None
    duration: int | None = None
    passing_score: int | None = None
    description: str | None = None
    question_ids: list[str] | None = None
    number_of_questions_to_display: int | None = None
    assign_random_questions: bool | None = None
    is_active: bool | None = None


class SessionPayload(CamelModel):
    """Payload schema for starting an exam."""

    exam_id: str
    student_name: str
    student_id: str


class ProgressPayload(CamelModel):
    """Payload schema for autosaved answers and navigation."""

    answers: dict[str, str]
    current_question_index: int = Field(default=0, ge=0)


class SubmitPayload(CamelModel):
    """Payload schema for the final submission. Omitted answers fall back to saved progress."""

    answers: dict[str, str] | None = None


class StudentPayload(CamelModel):
    """Payload schema for roster rows; incomplete rows are skipped on bulk upload."""

    name: str | None = None
    student_id: str | None = None
    class_level: str | None = None


def _get_manager_dependency(manager: CbtManager):
    def dependency() -> CbtManager:
        return manager

    return dependency


def _session_view(manager: CbtManager, session: ExamSession) -> dict[str, object]:
    view = ExamSessionView.model_validate(
        {**to_record(session), "timeRemaining": manager.get_time_remaining(session)}
    )
    return view.model_dump(mode="json", by_alias=True)


def _dashboard_payload(summary: DashboardSummary) -> dict[str, object]:
    return {
        "totalExams": summary.total_exams,
        "activeExams": summary.active_exams,
        "totalQuestions": summary.total_questions,
        "totalResults": summary.total_results,
        "passRate": summary.pass_rate,
        "examStats": [
            {
                "examId": row.exam_id,
                "title": row.title,
                "subject": row.subject,
                "attempts": row.attempts,
                "averagePercentage": row.average_percentage,
                "passCount": row.pass_count,
            }
            for row in summary.exam_stats
        ],
        "topScorers": [
            {
                "studentName": row.student_name,
                "studentId": row.student_id,
                "examId": row.exam_id,
                "percentage": row.percentage,
                "score": row.score,
                "totalPoints": row.total_points,
            }
            for row in summary.top_scorers
        ],
        "recentResults": [to_record(result) for result in summary.recent_results],
    }


def _start_expiry_sweeper(manager: CbtManager, stop: Event, interval: float) -> Thread:
    def run_sweeper() -> None:
        while not stop.wait(interval):
            try:
                manager.expire_overdue_sessions()
            except Exception:
                logger.exception("Expiry sweep failed")

    thread = Thread(target=run_sweeper, name="SessionExpirySweeper", daemon=True)
    thread.start()
    return thread


def create_api_app(manager: CbtManager) -> FastAPI:
    """Create a FastAPI application wired to the provided CBT manager."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = Event()
        sweeper = None
        if manager.settings.enforce_deadline:
            sweeper = _start_expiry_sweeper(manager, stop, _EXPIRY_SWEEP_INTERVAL_SECONDS)
        yield
        stop.set()
        if sweeper is not None:
            sweeper.join(timeout=_EXPIRY_SWEEP_INTERVAL_SECONDS)

    app = FastAPI(
        title=f"{APP_NAME} API",
        description=APP_ABOUT_TEXT,
        version=APP_VERSION,
        license_info={"name": APP_LICENSE},
        lifespan=lifespan,
    )
    manager_dep = _get_manager_dependency(manager)

    @app.exception_handler(CbtError)
    async def handle_cbt_error(request: Request, exc: CbtError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "details": exc.details},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(part) for part in error["loc"][1:]), "message": error["msg"]}
            for error in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"error": "Internal error", "details": []})

    # --- Questions ---

    @app.get("/api/questions")
    def list_questions(cbt: CbtManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return [to_record(q) for q in cbt.list_questions()]

    @app.get("/api/questions/{question_id}")
    def get_question(question_id: str, cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        return to_record(cbt.get_question(question_id))

    @app.post("/api/questions", status_code=201)
    def create_question(
        payload: QuestionPayload | list[QuestionPayload],
        cbt: CbtManager = Depends(manager_dep),
    ) -> dict[str, object] | list[dict[str, object]]:
        if isinstance(payload, list):
            return [to_record(q) for q in cbt.create_questions([p.model_dump() for p in payload])]
        return to_record(cbt.create_question(payload.model_dump()))

    @app.delete("/api/questions/{question_id}", status_code=204)
    def delete_question(question_id: str, cbt: CbtManager = Depends(manager_dep)) -> Response:
        cbt.delete_question(question_id)
        return Response(status_code=204)

    # --- Exams ---

    @app.get("/api/exams")
    def list_exams(
        active: bool = Query(default=False),
        cbt: CbtManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        return [to_record(e) for e in cbt.list_exams(active_only=active)]

    @app.get("/api/exams/{exam_id}")
    def get_exam(exam_id: str, cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        return to_record(cbt.get_exam(exam_id))

    @app.get("/api/exams/{exam_id}/questions")
    def get_exam_questions(exam_id: str, cbt: CbtManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return cbt.student_question_views(cbt.get_exam_questions(exam_id))

    @app.post("/api/exams", status_code=201)
    def create_exam(payload: ExamPayload, cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        return to_record(cbt.create_exam(payload.model_dump()))

    @app.patch("/api/exams/{exam_id}")
    def update_exam(
        exam_id: str,
        payload: ExamPatchPayload,
        cbt: CbtManager = Depends(manager_dep),
    ) -> dict[str, object]:
        return to_record(cbt.update_exam(exam_id, payload.model_dump(exclude_unset=True)))

    @app.delete("/api/exams/{exam_id}", status_code=204)
    def delete_exam(exam_id: str, cbt: CbtManager = Depends(manager_dep)) -> Response:
        cbt.delete_exam(exam_id)
        return Response(status_code=204)

    # --- Exam sessions ---

    @app.get("/api/exam-sessions")
    def list_sessions(
        exam_id: str | None = Query(default=None, alias="examId"),
        cbt: CbtManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        return [_session_view(cbt, s) for s in cbt.list_sessions(exam_id)]

    @app.post("/api/exam-sessions", status_code=201)
    def start_session(payload: SessionPayload, cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        session = cbt.start_session(payload.exam_id, payload.student_name, payload.student_id)
        return _session_view(cbt, session)

    @app.get("/api/exam-sessions/{session_id}")
    def get_session(session_id: str, cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        return _session_view(cbt, cbt.get_session(session_id))

    @app.get("/api/exam-sessions/{session_id}/questions")
    def get_session_questions(session_id: str, cbt: CbtManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return cbt.student_question_views(cbt.get_session_questions(session_id))

    @app.patch("/api/exam-sessions/{session_id}")
    def save_progress(
        session_id: str,
        payload: ProgressPayload,
        cbt: CbtManager = Depends(manager_dep),
    ) -> dict[str, object]:
        session = cbt.save_progress(session_id, payload.answers, payload.current_question_index)
        return _session_view(cbt, session)

    @app.post("/api/exam-sessions/{session_id}/submit")
    def submit_session(
        session_id: str,
        payload: SubmitPayload | None = Body(default=None),
        cbt: CbtManager = Depends(manager_dep),
    ) -> dict[str, object]:
        answers = payload.answers if payload is not None else None
        return to_record(cbt.submit_session(session_id, answers))

    @app.get("/api/exam-sessions/{session_id}/result")
    def get_session_result(session_id: str, cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        return to_record(cbt.get_result_for_session(session_id))

    @app.post("/api/exam-sessions/expire")
    def expire_sessions(cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        results = cbt.expire_overdue_sessions()
        return {"expired": len(results), "resultIds": [r.id for r in results]}

    # --- Results ---

    @app.get("/api/results")
    def list_results(
        exam_id: str | None = Query(default=None, alias="examId"),
        student_id: str | None = Query(default=None, alias="studentId"),
        cbt: CbtManager = Depends(manager_dep),
    ) -> list[dict[str, object]]:
        return [to_record(r) for r in cbt.list_results(exam_id=exam_id, student_id=student_id)]

    @app.get("/api/results/{result_id}")
    def get_result(result_id: str, cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        return to_record(cbt.get_result(result_id))

    @app.get("/api/dashboard")
    def get_dashboard(cbt: CbtManager = Depends(manager_dep)) -> dict[str, object]:
        return _dashboard_payload(cbt.get_dashboard_summary())

    # --- Students ---

    @app.get("/api/students")
    def list_students(cbt: CbtManager = Depends(manager_dep)) -> list[dict[str, object]]:
        return [to_record(s) for s in cbt.list_students()]

    @app.post("/api/students", status_code=201)
    def register_students(
        payload: StudentPayload | list[StudentPayload],
        cbt: CbtManager = Depends(manager_dep),
    ) -> dict[str, object] | list[dict[str, object]]:
        if isinstance(payload, list):
            return [to_record(s) for s in cbt.register_students([p.model_dump() for p in payload])]
        student = cbt.register_student(payload.name or "", payload.student_id or "", payload.class_level)
        return to_record(student)

    @app.patch("/api/students/{student_pk}")
    def update_student(
        student_pk: str,
        payload: StudentPayload,
        cbt: CbtManager = Depends(manager_dep),
    ) -> dict[str, object]:
        return to_record(cbt.update_student(student_pk, payload.model_dump(exclude_unset=True)))

    @app.delete("/api/students/{student_pk}", status_code=204)
    def delete_student(student_pk: str, cbt: CbtManager = Depends(manager_dep)) -> Response:
        cbt.delete_student(student_pk)
        return Response(status_code=204)

    return app


def run_api_server(
    manager: CbtManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    server.run()
