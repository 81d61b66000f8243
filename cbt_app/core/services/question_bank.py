"""Service for managing the question bank."""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from cbt_app.constants.exam_constants import (
    CLASS_LEVELS,
    DEFAULT_QUESTION_POINTS,
    DIFFICULTY_LEVELS,
    MAX_MULTIPLE_CHOICE_OPTIONS,
    MIN_MULTIPLE_CHOICE_OPTIONS,
    QUESTION_TYPES,
)
from cbt_app.core.errors import NotFoundError, ValidationError
from cbt_app.core.models import Question
from cbt_app.core.services.store import Collection

logger = logging.getLogger(__name__)


class QuestionBank:
    """Validates and stores question records."""

    def __init__(self, questions: Collection[Question]) -> None:
        self._questions = questions

    def list_questions(self) -> list[Question]:
        return self._questions.list()

    def get_question(self, question_id: str) -> Question:
        question = self._questions.get(question_id)
        if question is None:
            raise NotFoundError.for_entity("Question", question_id)
        return question

    def get_questions(self, question_ids: list[str]) -> list[Question]:
        """Return questions in the given order, skipping ids that no longer exist."""
        found: list[Question] = []
        for question_id in question_ids:
            question = self._questions.get(question_id)
            if question is not None:
                found.append(question)
        return found

    def find_by_subject_and_class(self, subject: str, class_level: str) -> list[Question]:
        return self._questions.filter(
            lambda q: q.subject == subject and q.class_level == class_level
        )

    def create_question(self, data: dict[str, Any]) -> Question:
        question = self._prepare_question(data)
        self._questions.put(question)
        logger.info("Created question %s (%s, %s)", question.id, question.subject, question.class_level)
        return question

    def create_questions(self, rows: list[dict[str, Any]]) -> list[Question]:
        prepared = [self._prepare_question(row) for row in rows]
        self._questions.put_many(prepared)
        logger.info("Created %d questions", len(prepared))
        return prepared

    def delete_question(self, question_id: str) -> None:
        if not self._questions.delete(question_id):
            raise NotFoundError.for_entity("Question", question_id)

    def _prepare_question(self, data: dict[str, Any]) -> Question:
        """Validate and normalize a question payload before storage."""
        errors: list[dict[str, str]] = []

        question_text = str(data.get("question_text") or "").strip()
        if not question_text:
            errors.append({"field": "questionText", "message": "Question text must not be empty."})

        question_type = data.get("question_type")
        if question_type not in QUESTION_TYPES:
            errors.append({"field": "questionType", "message": f"Must be one of {', '.join(QUESTION_TYPES)}."})

        difficulty = data.get("difficulty")
        if difficulty not in DIFFICULTY_LEVELS:
            errors.append({"field": "difficulty", "message": f"Must be one of {', '.join(DIFFICULTY_LEVELS)}."})

        class_level = data.get("class_level")
        if class_level not in CLASS_LEVELS:
            errors.append({"field": "classLevel", "message": f"Must be one of {', '.join(CLASS_LEVELS)}."})

        subject = str(data.get("subject") or "").strip()
        if not subject:
            errors.append({"field": "subject", "message": "Subject must not be empty."})

        correct_answer = str(data.get("correct_answer") or "").strip()
        if not correct_answer:
            errors.append({"field": "correctAnswer", "message": "Correct answer must not be empty."})

        points = data.get("points", DEFAULT_QUESTION_POINTS)
        if points is None:
            points = DEFAULT_QUESTION_POINTS
        if not isinstance(points, int) or isinstance(points, bool) or points < 1:
            errors.append({"field": "points", "message": "Points must be an integer of at least 1."})

        options = self._normalize_options(question_type, data.get("options"), errors)

        if errors:
            raise ValidationError("Invalid question.", details=errors)

        return Question(
            id=uuid4().hex,
            question_text=question_text,
            question_type=question_type,
            subject=subject,
            class_level=class_level,
            difficulty=difficulty,
            correct_answer=correct_answer,
            points=points,
            options=options,
        )

    @staticmethod
    def _normalize_options(
        question_type: str | None,
        options: list[str] | None,
        errors: list[dict[str, str]],
    ) -> list[str] | None:
        if question_type != "multiple-choice":
            return None
        cleaned = [str(option).strip() for option in options or []]
        if len(cleaned) < MIN_MULTIPLE_CHOICE_OPTIONS:
            errors.append({
                "field": "options",
                "message": f"Multiple-choice questions need at least {MIN_MULTIPLE_CHOICE_OPTIONS} options.",
            })
        elif len(cleaned) > MAX_MULTIPLE_CHOICE_OPTIONS:
            errors.append({
                "field": "options",
                "message": f"Multiple-choice questions allow at most {MAX_MULTIPLE_CHOICE_OPTIONS} options.",
            })
        elif any(not option for option in cleaned):
            errors.append({"field": "options", "message": "Option text cannot be empty."})
        return cleaned
