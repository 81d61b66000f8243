"""Service for managing registered students."""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from cbt_app.constants.exam_constants import CLASS_LEVELS
from cbt_app.core.errors import NotFoundError, ValidationError
from cbt_app.core.models import Student
from cbt_app.core.services.store import Collection

logger = logging.getLogger(__name__)

_UNKNOWN_CLASS_LEVEL = "Unknown"


class StudentRoster:
    """Registers students. ``student_id`` is unique across the roster."""

    def __init__(self, students: Collection[Student]) -> None:
        self._students = students

    def list_students(self) -> list[Student]:
        return sorted(self._students.list(), key=lambda s: s.name.casefold())

    def get_student(self, student_pk: str) -> Student:
        student = self._students.get(student_pk)
        if student is None:
            raise NotFoundError.for_entity("Student", student_pk)
        return student

    def register_student(self, name: str, student_id: str, class_level: str | None = None) -> Student:
        student = self._build(name, student_id, class_level)
        self._students.put(student)
        logger.info("Registered student %s", student.student_id)
        return student

    def register_students(self, rows: list[dict[str, Any]]) -> list[Student]:
        """Bulk registration. Rows without a name or student id are skipped."""
        students = [
            self._build(row["name"], row["student_id"], row.get("class_level"))
            for row in rows
            if row and str(row.get("name") or "").strip() and str(row.get("student_id") or "").strip()
        ]
        self._students.put_many(students)
        logger.info("Registered %d of %d uploaded students", len(students), len(rows))
        return students

    def update_student(self, student_pk: str, changes: dict[str, Any]) -> Student:
        student = self.get_student(student_pk)
        updated = self._build(
            changes.get("name", student.name),
            changes.get("student_id", student.student_id),
            changes.get("class_level", student.class_level),
            student_pk=student.id,
        )
        self._students.put(updated)
        return updated

    def delete_student(self, student_pk: str) -> None:
        if not self._students.delete(student_pk):
            raise NotFoundError.for_entity("Student", student_pk)

    @staticmethod
    def _build(
        name: str,
        student_id: str,
        class_level: str | None,
        student_pk: str | None = None,
    ) -> Student:
        cleaned_name = str(name or "").strip()
        cleaned_id = str(student_id or "").strip()
        errors = []
        if not cleaned_name:
            errors.append({"field": "name", "message": "Name is required."})
        if not cleaned_id:
            errors.append({"field": "studentId", "message": "Student id is required."})
        level = class_level or _UNKNOWN_CLASS_LEVEL
        if level != _UNKNOWN_CLASS_LEVEL and level not in CLASS_LEVELS:
            errors.append({"field": "classLevel", "message": f"Must be one of {', '.join(CLASS_LEVELS)}."})
        if errors:
            raise ValidationError("name and studentId required", details=errors)
        return Student(
            id=student_pk or uuid4().hex,
            name=cleaned_name,
            student_id=cleaned_id,
            class_level=level,
        )
