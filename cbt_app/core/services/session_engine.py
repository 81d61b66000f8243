"""Service for managing exam sessions from start to submission."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import math
import random
from threading import Lock
from typing import Callable, Mapping
from uuid import uuid4

from cbt_app.constants.exam_constants import DEFAULT_DEADLINE_GRACE_SECONDS
from cbt_app.core.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    SessionClosedError,
    SessionExpiredError,
    ValidationError,
)
from cbt_app.core.grading import grade
from cbt_app.core.models import Exam, ExamSession, Result
from cbt_app.core.services.exam_catalog import ExamCatalog
from cbt_app.core.services.question_bank import QuestionBank
from cbt_app.core.services.store import Collection

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionLockRegistry:
    """Hands out one lock per session id. Entries are released once a session is closed."""

    def __init__(self) -> None:
        self._locks: dict[str, Lock] = {}
        self._guard = Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def for_session(self, session_id: str) -> Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = Lock()
                self._locks[session_id] = lock
            return lock

    def release(self, session_id: str) -> None:
        with self._guard:
            self._locks.pop(session_id, None)


class SessionEngine:
    """Drives the Active -> Completed lifecycle of exam sessions.

    ``record_progress`` and ``finalize`` on the same session are serialized
    by a per-session lock, so a session produces at most one Result even
    when several submissions race.
    """

    def __init__(
        self,
        sessions: Collection[ExamSession],
        results: Collection[Result],
        exam_catalog: ExamCatalog,
        question_bank: QuestionBank,
        *,
        allow_concurrent_attempts: bool = True,
        enforce_deadline: bool = False,
        deadline_grace_seconds: int = DEFAULT_DEADLINE_GRACE_SECONDS,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._results = results
        self._exam_catalog = exam_catalog
        self._question_bank = question_bank
        self._allow_concurrent_attempts = allow_concurrent_attempts
        self._enforce_deadline = enforce_deadline
        self._grace = timedelta(seconds=max(0, deadline_grace_seconds))
        self._rng = rng or random.Random()
        self._rng_lock = Lock()
        self._create_lock = Lock()
        self._clock = clock
        self._locks = SessionLockRegistry()

    # --- Lifecycle ---

    def create_session(self, exam_id: str, student_name: str, student_id: str) -> ExamSession:
        """Start a new attempt and bind it to its resolved question set."""
        student_name = (student_name or "").strip()
        student_id = (student_id or "").strip()
        errors = []
        if not student_name:
            errors.append({"field": "studentName", "message": "Student name must not be empty."})
        if not student_id:
            errors.append({"field": "studentId", "message": "Student id must not be empty."})
        if errors:
            raise ValidationError("Invalid session.", details=errors)

        exam = self._exam_catalog.get_exam(exam_id)
        with self._create_lock:
            if not self._allow_concurrent_attempts:
                active = self._sessions.find(
                    lambda s: s.exam_id == exam_id and s.student_id == student_id and not s.is_completed
                )
                if active is not None:
                    raise ConflictError(
                        f"Student {student_id} already has an active session for this exam.",
                        details=[{"field": "sessionId", "message": active.id}],
                    )
            with self._rng_lock:
                question_ids = self._exam_catalog.resolve_question_ids(exam, self._rng)
            session = ExamSession(
                id=uuid4().hex,
                exam_id=exam.id,
                student_name=student_name,
                student_id=student_id,
                started_at=self._clock(),
                session_question_ids=question_ids,
            )
            self._sessions.put(session)
        logger.info(
            "Started session %s for %s on exam %s (%d questions)",
            session.id,
            student_id,
            exam.id,
            len(question_ids),
        )
        return session

    def get_session(self, session_id: str) -> ExamSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFoundError.for_entity("Exam session", session_id)
        return session

    def list_sessions(self, exam_id: str | None = None) -> list[ExamSession]:
        sessions = self._sessions.list()
        if exam_id is not None:
            sessions = [s for s in sessions if s.exam_id == exam_id]
        return sorted(sessions, key=lambda s: s.started_at)

    def find_active_session_using(self, question_id: str) -> ExamSession | None:
        """An unsubmitted session whose question set includes ``question_id``, if any."""
        return self._sessions.find(
            lambda s: not s.is_completed and question_id in (s.session_question_ids or ())
        )

    def record_progress(
        self,
        session_id: str,
        answers: Mapping[str, str],
        current_question_index: int,
    ) -> ExamSession:
        """Overwrite the stored answers and position. Last write wins; nothing is merged."""
        if current_question_index < 0:
            raise ValidationError(
                "Invalid progress.",
                details=[{"field": "currentQuestionIndex", "message": "Must be zero or greater."}],
            )
        if self.get_session(session_id).is_completed:
            raise self._closed(session_id)
        with self._locks.for_session(session_id):
            session = self.get_session(session_id)
            if session.is_completed:
                raise self._closed(session_id)
            if self._enforce_deadline:
                exam = self._exam_catalog.get_exam(session.exam_id)
                if self._is_past_grace(session, exam):
                    logger.warning("Rejected progress for expired session %s", session_id)
                    raise SessionExpiredError("Exam time is over.")
            session.answers = dict(answers)
            session.current_question_index = current_question_index
            self._sessions.put(session)
            return session

    def finalize(self, session_id: str, answers: Mapping[str, str] | None = None) -> Result:
        """Grade and close a session, or return its Result if it was already closed.

        A Result left behind by an interrupted earlier call is adopted, so a
        failed finalize can be retried.
        """
        if self.get_session(session_id).is_completed:
            return self._existing_result(session_id)
        with self._locks.for_session(session_id):
            session = self.get_session(session_id)
            if session.is_completed:
                return self._existing_result(session_id)

            orphan = self.get_result_for_session(session_id)
            if orphan is not None:
                logger.warning("Session %s already has result %s; closing it", session_id, orphan.id)
                session.is_completed = True
                session.ended_at = orphan.completed_at
                session.answers = dict(orphan.answers)
                self._sessions.put(session)
                self._locks.release(session_id)
                return orphan

            exam = self._exam_catalog.get_exam(session.exam_id)
            final_answers = dict(answers) if answers is not None else dict(session.answers)
            if self._enforce_deadline and answers is not None and self._is_past_grace(session, exam):
                logger.warning(
                    "Late submission for session %s; grading last saved progress", session_id
                )
                final_answers = dict(session.answers)

            question_ids = (
                session.session_question_ids
                if session.session_question_ids is not None
                else exam.question_ids
            )
            questions = self._question_bank.get_questions(question_ids)
            if len(questions) < len(question_ids):
                logger.warning(
                    "Session %s references %d deleted questions; grading them as incorrect",
                    session_id,
                    len(question_ids) - len(questions),
                )
            report = grade(questions, final_answers, exam.passing_score)
            correct_answers = {qid: report.correct_answers.get(qid, False) for qid in question_ids}

            now = self._clock()
            result = Result(
                id=uuid4().hex,
                session_id=session.id,
                exam_id=exam.id,
                student_name=session.student_name,
                student_id=session.student_id,
                score=report.score,
                total_points=report.total_points,
                percentage=report.percentage,
                passed=report.passed,
                answers=final_answers,
                correct_answers=correct_answers,
                completed_at=now,
            )
            self._results.put(result)

            session.is_completed = True
            session.ended_at = now
            session.answers = final_answers
            self._sessions.put(session)
            self._locks.release(session_id)
        logger.info(
            "Finalized session %s: %d/%d (%d%%, %s)",
            session_id,
            result.score,
            result.total_points,
            result.percentage,
            "passed" if result.passed else "failed",
        )
        return result

    def get_result_for_session(self, session_id: str) -> Result | None:
        return self._results.find(lambda r: r.session_id == session_id)

    def _existing_result(self, session_id: str) -> Result:
        existing = self.get_result_for_session(session_id)
        if existing is None:
            logger.error("Session %s is completed but has no result", session_id)
            raise InternalError("Result missing for completed session")
        return existing

    @staticmethod
    def _closed(session_id: str) -> SessionClosedError:
        logger.warning("Rejected progress for submitted session %s", session_id)
        return SessionClosedError("Exam session has already been submitted.")

    # --- Time budget ---

    def time_remaining(self, session: ExamSession, exam: Exam, now: datetime | None = None) -> int:
        """Seconds left in the attempt, floored at zero."""
        now = now or self._clock()
        elapsed = math.floor((now - session.started_at).total_seconds())
        return max(0, exam.duration * 60 - elapsed)

    def deadline(self, session: ExamSession, exam: Exam) -> datetime:
        return session.started_at + timedelta(minutes=exam.duration)

    def expire_overdue_sessions(self, now: datetime | None = None) -> list[Result]:
        """Finalize every active session whose time budget is used up, using saved progress."""
        now = now or self._clock()
        finalized: list[Result] = []
        for session in self._sessions.filter(lambda s: not s.is_completed):
            try:
                exam = self._exam_catalog.get_exam(session.exam_id)
            except NotFoundError:
                logger.warning("Session %s references missing exam %s", session.id, session.exam_id)
                continue
            if self.time_remaining(session, exam, now) > 0:
                continue
            finalized.append(self.finalize(session.id))
        if finalized:
            logger.info("Expired %d overdue sessions", len(finalized))
        return finalized

    def _is_past_grace(self, session: ExamSession, exam: Exam) -> bool:
        return self._clock() > self.deadline(session, exam) + self._grace
