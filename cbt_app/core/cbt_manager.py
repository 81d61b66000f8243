"""Business logic shared by the HTTP layer and command-line entry points."""

from __future__ import annotations

from datetime import datetime
import logging
from pathlib import Path
import random
from typing import Any, Mapping

from cbt_app.core.errors import ConflictError
from cbt_app.core.markdown_math_renderer import renderer
from cbt_app.core.models import Exam, ExamSession, Question, Result, Student
from cbt_app.core.question_exporter import save_questions_to_file
from cbt_app.core.question_importer import load_questions_from_file
from cbt_app.core.records import StudentQuestionRecord
from cbt_app.core.services.exam_catalog import ExamCatalog
from cbt_app.core.services.question_bank import QuestionBank
from cbt_app.core.services.results_summary import DashboardSummary, ResultsSummary
from cbt_app.core.services.session_engine import SessionEngine, utcnow
from cbt_app.core.services.store import CbtStore
from cbt_app.core.services.student_roster import StudentRoster
from cbt_app.utils.settings import CbtSettings

logger = logging.getLogger(__name__)


class CbtManager:
    """Facade for the CBT services: QuestionBank, ExamCatalog, SessionEngine, ResultsSummary and StudentRoster."""

    def __init__(
        self,
        store: CbtStore | None = None,
        settings: CbtSettings | None = None,
        rng: random.Random | None = None,
        clock=utcnow,
    ) -> None:
        self._settings = settings or CbtSettings()
        self._store = store or self._store_for(self._settings)
        if rng is None and self._settings.selection_seed is not None:
            rng = random.Random(self._settings.selection_seed)

        # Services
        self._questions = QuestionBank(self._store.questions)
        self._exams = ExamCatalog(self._store.exams, self._questions, clock=clock)
        self._sessions = SessionEngine(
            self._store.sessions,
            self._store.results,
            self._exams,
            self._questions,
            allow_concurrent_attempts=self._settings.allow_concurrent_attempts,
            enforce_deadline=self._settings.enforce_deadline,
            deadline_grace_seconds=self._settings.deadline_grace_seconds,
            rng=rng,
            clock=clock,
        )
        self._results = ResultsSummary(self._store.results)
        self._students = StudentRoster(self._store.students)

    @staticmethod
    def _store_for(settings: CbtSettings) -> CbtStore:
        if settings.data_dir is None:
            return CbtStore.in_memory()
        logger.info("Persisting collections under %s", settings.data_dir)
        return CbtStore.from_directory(settings.data_dir)

    @property
    def settings(self) -> CbtSettings:
        return self._settings

    # --- Question Bank Delegation ---

    def list_questions(self) -> list[Question]:
        return self._questions.list_questions()

    def get_question(self, question_id: str) -> Question:
        return self._questions.get_question(question_id)

    def create_question(self, data: dict[str, Any]) -> Question:
        return self._questions.create_question(data)

    def create_questions(self, rows: list[dict[str, Any]]) -> list[Question]:
        return self._questions.create_questions(rows)

    def delete_question(self, question_id: str) -> None:
        """Delete a question unless a student is currently answering it."""
        active = self._sessions.find_active_session_using(question_id)
        if active is not None:
            raise ConflictError(
                "Question is part of an exam session in progress.",
                details=[{"field": "sessionId", "message": active.id}],
            )
        self._questions.delete_question(question_id)

    def import_questions(
        self,
        file_path: Path,
        subject: str | None = None,
        class_level: str | None = None,
    ) -> list[Question]:
        imported = load_questions_from_file(file_path, subject=subject, class_level=class_level)
        created = self._questions.create_questions(imported.rows)
        logger.info("Imported %d questions from %s", len(created), file_path)
        return created

    def export_questions(self, file_path: Path, subject: str | None = None) -> int:
        questions = [
            q for q in self._questions.list_questions() if subject is None or q.subject == subject
        ]
        save_questions_to_file(file_path, questions)
        return len(questions)

    # --- Exam Catalog Delegation ---

    def list_exams(self, active_only: bool = False) -> list[Exam]:
        return self._exams.list_exams(active_only=active_only)

    def get_exam(self, exam_id: str) -> Exam:
        return self._exams.get_exam(exam_id)

    def create_exam(self, data: dict[str, Any]) -> Exam:
        return self._exams.create_exam(data)

    def update_exam(self, exam_id: str, changes: dict[str, Any]) -> Exam:
        return self._exams.update_exam(exam_id, changes)

    def delete_exam(self, exam_id: str) -> None:
        self._exams.delete_exam(exam_id)

    def get_exam_questions(self, exam_id: str) -> list[Question]:
        """Authored question list of an exam, in order."""
        exam = self._exams.get_exam(exam_id)
        return self._questions.get_questions(exam.question_ids)

    # --- Session Engine Delegation ---

    def start_session(self, exam_id: str, student_name: str, student_id: str) -> ExamSession:
        return self._sessions.create_session(exam_id, student_name, student_id)

    def get_session(self, session_id: str) -> ExamSession:
        return self._sessions.get_session(session_id)

    def list_sessions(self, exam_id: str | None = None) -> list[ExamSession]:
        return self._sessions.list_sessions(exam_id)

    def save_progress(
        self,
        session_id: str,
        answers: Mapping[str, str],
        current_question_index: int,
    ) -> ExamSession:
        return self._sessions.record_progress(session_id, answers, current_question_index)

    def submit_session(self, session_id: str, answers: Mapping[str, str] | None = None) -> Result:
        return self._sessions.finalize(session_id, answers)

    def get_time_remaining(self, session: ExamSession, now: datetime | None = None) -> int | None:
        """Seconds left in the attempt: 0 once submitted, ``None`` when the exam no longer exists."""
        if session.is_completed:
            return 0
        exam = self._store.exams.get(session.exam_id)
        if exam is None:
            return None
        return self._sessions.time_remaining(session, exam, now)

    def get_session_questions(self, session_id: str) -> list[Question]:
        """Questions presented in this session, in presentation order."""
        session = self._sessions.get_session(session_id)
        if session.session_question_ids is not None:
            return self._questions.get_questions(session.session_question_ids)
        return self.get_exam_questions(session.exam_id)

    def expire_overdue_sessions(self, now: datetime | None = None) -> list[Result]:
        return self._sessions.expire_overdue_sessions(now)

    def student_question_views(self, questions: list[Question]) -> list[dict[str, Any]]:
        """Serialize questions for a student; the answer key is withheld unless configured otherwise."""
        exclude = None if self._settings.expose_answer_key else {"correct_answer"}
        views = []
        for question in questions:
            record = StudentQuestionRecord(
                id=question.id,
                question_text=question.question_text,
                question_html=renderer.render_fragment(question.question_text),
                question_type=question.question_type,
                subject=question.subject,
                class_level=question.class_level,
                difficulty=question.difficulty,
                points=question.points,
                options=question.options,
                options_html=(
                    [renderer.render_inline(option) for option in question.options]
                    if question.options
                    else None
                ),
                correct_answer=question.correct_answer,
            )
            views.append(record.model_dump(mode="json", by_alias=True, exclude=exclude))
        return views

    # --- Results Delegation ---

    def get_result(self, result_id: str) -> Result:
        return self._results.get_result(result_id)

    def get_result_for_session(self, session_id: str) -> Result:
        return self._results.get_result_for_session(session_id)

    def list_results(self, exam_id: str | None = None, student_id: str | None = None) -> list[Result]:
        return self._results.list_results(exam_id=exam_id, student_id=student_id)

    def get_dashboard_summary(self) -> DashboardSummary:
        return self._results.summarize(
            self._exams.list_exams(),
            total_questions=self._store.questions.count(),
        )

    # --- Student Roster Delegation ---

    def list_students(self) -> list[Student]:
        return self._students.list_students()

    def register_student(self, name: str, student_id: str, class_level: str | None = None) -> Student:
        return self._students.register_student(name, student_id, class_level)

    def register_students(self, rows: list[dict[str, Any]]) -> list[Student]:
        return self._students.register_students(rows)

    def update_student(self, student_pk: str, changes: dict[str, Any]) -> Student:
        return self._students.update_student(student_pk, changes)

    def delete_student(self, student_pk: str) -> None:
        self._students.delete_student(student_pk)
