"""Domain models for the CBT engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Question:
    """A question-bank entry. ``options`` is only set for multiple-choice questions."""

    id: str
    question_text: str
    question_type: str
    subject: str
    class_level: str
    difficulty: str
    correct_answer: str
    points: int = 1
    options: list[str] | None = None


@dataclass(frozen=True, slots=True)
class FixedQuestionSet:
    """Every attempt sees the authored list."""

    question_ids: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RandomQuestionSet:
    """Every attempt sees ``count`` questions drawn from the candidate pool."""

    count: int


QuestionSetPlan = FixedQuestionSet | RandomQuestionSet


@dataclass(slots=True)
class Exam:
    """Exam definition authored by an administrator."""

    id: str
    title: str
    subject: str
    class_level: str
    duration: int  # minutes
    passing_score: int  # percent
    question_ids: list[str]
    total_points: int
    created_at: datetime
    description: str | None = None
    number_of_questions_to_display: int | None = None
    assign_random_questions: bool = False
    is_active: bool = True

    @property
    def question_set(self) -> QuestionSetPlan:
        count = self.number_of_questions_to_display
        if count is not None and count > 0:
            return RandomQuestionSet(count=count)
        return FixedQuestionSet(question_ids=tuple(self.question_ids))


@dataclass(slots=True)
class ExamSession:
    """One student's attempt at an exam."""

    id: str
    exam_id: str
    student_name: str
    student_id: str
    started_at: datetime
    answers: dict[str, str] = field(default_factory=dict)
    current_question_index: int = 0
    is_completed: bool = False
    ended_at: datetime | None = None
    session_question_ids: list[str] | None = None


@dataclass(slots=True)
class Result:
    """Graded outcome of a finalized session. Never mutated after creation."""

    id: str
    session_id: str
    exam_id: str
    student_name: str
    student_id: str
    score: int
    total_points: int
    percentage: int
    passed: bool
    answers: dict[str, str]
    correct_answers: dict[str, bool]
    completed_at: datetime


@dataclass(slots=True)
class Student:
    """Registered student. ``student_id`` is the school-issued identifier."""

    id: str
    name: str
    student_id: str
    class_level: str = "Unknown"
