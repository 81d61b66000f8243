"""Service for authoring exam definitions and resolving their question sets."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import random
from typing import Any, Callable
from uuid import uuid4

from cbt_app.constants.exam_constants import CLASS_LEVELS
from cbt_app.core.errors import InsufficientQuestionsError, NotFoundError, ValidationError
from cbt_app.core.models import Exam, FixedQuestionSet
from cbt_app.core.question_selection import candidate_pool, resolve_question_set
from cbt_app.core.services.question_bank import QuestionBank
from cbt_app.core.services.store import Collection

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = (
    "title",
    "description",
    "subject",
    "class_level",
    "duration",
    "passing_score",
    "question_ids",
    "number_of_questions_to_display",
    "assign_random_questions",
    "is_active",
)
_POINT_FIELDS = {"subject", "class_level", "question_ids", "number_of_questions_to_display"}


class ExamCatalog:
    """Creates, updates and resolves exam definitions."""

    def __init__(
        self,
        exams: Collection[Exam],
        question_bank: QuestionBank,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._exams = exams
        self._question_bank = question_bank
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def list_exams(self, active_only: bool = False) -> list[Exam]:
        exams = self._exams.list()
        if active_only:
            exams = [exam for exam in exams if exam.is_active]
        return sorted(exams, key=lambda e: e.created_at)

    def get_exam(self, exam_id: str) -> Exam:
        exam = self._exams.get(exam_id)
        if exam is None:
            raise NotFoundError.for_entity("Exam", exam_id)
        return exam

    def create_exam(self, data: dict[str, Any]) -> Exam:
        """Validate an exam payload, compute its total points and store it.

        Raises:
            ValidationError: malformed fields.
            InsufficientQuestionsError: a random-subset exam whose pool is too small.
        """
        fields = self._validate({
            "title": data.get("title"),
            "description": data.get("description"),
            "subject": data.get("subject"),
            "class_level": data.get("class_level"),
            "duration": data.get("duration"),
            "passing_score": data.get("passing_score"),
            "question_ids": data.get("question_ids") or [],
            "number_of_questions_to_display": data.get("number_of_questions_to_display"),
            "assign_random_questions": bool(data.get("assign_random_questions", False)),
            "is_active": data.get("is_active", True),
        })
        exam = Exam(
            id=uuid4().hex,
            total_points=0,
            created_at=self._clock(),
            **fields,
        )
        exam.total_points = self.compute_total_points(exam)
        self._exams.put(exam)
        logger.info(
            "Created exam %s '%s' (%s questions, %s points)",
            exam.id,
            exam.title,
            exam.number_of_questions_to_display or len(exam.question_ids),
            exam.total_points,
        )
        return exam

    def update_exam(self, exam_id: str, changes: dict[str, Any]) -> Exam:
        exam = self.get_exam(exam_id)
        unknown = sorted(set(changes) - set(_UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(
                "Unknown exam fields.",
                details=[{"field": name, "message": "Field cannot be updated."} for name in unknown],
            )
        merged = {name: getattr(exam, name) for name in _UPDATABLE_FIELDS}
        merged.update(changes)
        if merged["question_ids"] is None:
            merged["question_ids"] = []
        fields = self._validate(merged)
        for name, value in fields.items():
            setattr(exam, name, value)
        if _POINT_FIELDS & set(changes):
            exam.total_points = self.compute_total_points(exam)
        self._exams.put(exam)
        logger.info("Updated exam %s (%s)", exam.id, ", ".join(sorted(changes)) or "no changes")
        return exam

    def delete_exam(self, exam_id: str) -> None:
        if not self._exams.delete(exam_id):
            raise NotFoundError.for_entity("Exam", exam_id)
        logger.info("Deleted exam %s", exam_id)

    def compute_total_points(self, exam: Exam) -> int:
        """Point sum of the fixed list, or of the candidate pool for random-subset exams."""
        plan = exam.question_set
        if isinstance(plan, FixedQuestionSet):
            questions = self._question_bank.get_questions(list(plan.question_ids))
            return sum(q.points for q in questions)
        pool = candidate_pool(exam, self._candidates_for(exam))
        if len(pool) < plan.count:
            raise InsufficientQuestionsError(requested=plan.count, available=len(pool))
        return sum(q.points for q in self._question_bank.get_questions(pool))

    def resolve_question_ids(self, exam: Exam, rng: random.Random | None = None) -> list[str]:
        """Resolve the question ids for one new attempt at ``exam``."""
        return resolve_question_set(
            exam,
            self._candidates_for(exam),
            randomize=exam.assign_random_questions,
            rng=rng,
        )

    def _candidates_for(self, exam: Exam):
        return self._question_bank.find_by_subject_and_class(exam.subject, exam.class_level)

    @staticmethod
    def _validate(fields: dict[str, Any]) -> dict[str, Any]:
        errors: list[dict[str, str]] = []

        title = str(fields.get("title") or "").strip()
        if not title:
            errors.append({"field": "title", "message": "Title must not be empty."})
        subject = str(fields.get("subject") or "").strip()
        if not subject:
            errors.append({"field": "subject", "message": "Subject must not be empty."})
        if fields.get("class_level") not in CLASS_LEVELS:
            errors.append({"field": "classLevel", "message": f"Must be one of {', '.join(CLASS_LEVELS)}."})

        duration = fields.get("duration")
        if not _is_int(duration) or duration < 1:
            errors.append({"field": "duration", "message": "Duration must be a positive number of minutes."})
        passing_score = fields.get("passing_score")
        if not _is_int(passing_score) or not 0 <= passing_score <= 100:
            errors.append({"field": "passingScore", "message": "Passing score must be between 0 and 100."})

        display_count = fields.get("number_of_questions_to_display")
        if display_count is not None and not _is_int(display_count):
            errors.append({"field": "numberOfQuestionsToDisplay", "message": "Must be an integer."})
        elif display_count is not None and display_count <= 0:
            display_count = None

        question_ids = [str(qid) for qid in fields.get("question_ids") or []]
        if display_count is None and not question_ids:
            errors.append({
                "field": "questionIds",
                "message": "Select at least one question or set numberOfQuestionsToDisplay.",
            })

        if errors:
            raise ValidationError("Invalid exam.", details=errors)

        description = fields.get("description")
        return {
            "title": title,
            "description": description.strip() if isinstance(description, str) and description.strip() else None,
            "subject": subject,
            "class_level": fields["class_level"],
            "duration": duration,
            "passing_score": passing_score,
            "question_ids": question_ids,
            "number_of_questions_to_display": display_count,
            "assign_random_questions": bool(fields.get("assign_random_questions")),
            "is_active": bool(fields.get("is_active", True)),
        }


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
