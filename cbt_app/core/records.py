"""Pydantic records mirroring the domain models with camelCase wire names.

The same records serve the JSON-file store and the HTTP responses, so a
persisted entity and an API payload always share one shape.
"""

from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from cbt_app.core.models import Exam, ExamSession, Question, Result, Student

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class QuestionRecord(CamelModel):
    id: str
    question_text: str
    question_type: str
    subject: str
    class_level: str
    difficulty: str
    correct_answer: str
    points: int
    options: list[str] | None = None


class StudentQuestionRecord(CamelModel):
    """Question as shown to a student during an exam: no answer key."""

    id: str
    question_text: str
    question_html: str
    question_type: str
    subject: str
    class_level: str
    difficulty: str
    points: int
    options: list[str] | None = None
    options_html: list[str] | None = None
    correct_answer: str | None = None


class ExamRecord(CamelModel):
    id: str
    title: str
    subject: str
    class_level: str
    duration: int
    passing_score: int
    question_ids: list[str]
    total_points: int
    created_at: datetime
    description: str | None = None
    number_of_questions_to_display: int | None = None
    assign_random_questions: bool = False
    is_active: bool = True


class ExamSessionRecord(CamelModel):
    id: str
    exam_id: str
    student_name: str
    student_id: str
    started_at: datetime
    answers: dict[str, str]
    current_question_index: int
    is_completed: bool
    ended_at: datetime | None = None
    session_question_ids: list[str] | None = None


class ExamSessionView(ExamSessionRecord):
    """Session record plus the server-computed remaining time budget."""

    time_remaining: int | None = None


class ResultRecord(CamelModel):
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


class StudentRecord(CamelModel):
    id: str
    name: str
    student_id: str
    class_level: str = "Unknown"


RECORD_TYPES: dict[type, type[CamelModel]] = {
    Question: QuestionRecord,
    Exam: ExamRecord,
    ExamSession: ExamSessionRecord,
    Result: ResultRecord,
    Student: StudentRecord,
}


def to_record(entity: Any) -> dict[str, Any]:
    """Serialize a domain dataclass to a JSON-ready camelCase dict."""
    record_type = RECORD_TYPES[type(entity)]
    return record_type.model_validate(entity).model_dump(mode="json", by_alias=True)


def from_record(entity_type: type[T], data: dict[str, Any]) -> T:
    """Rebuild a domain dataclass from a camelCase (or snake_case) dict."""
    if not is_dataclass(entity_type):
        raise TypeError(f"{entity_type!r} is not a dataclass")
    record = RECORD_TYPES[entity_type].model_validate(data)
    values = record.model_dump()
    return entity_type(**{f.name: values[f.name] for f in fields(entity_type) if f.name in values})
