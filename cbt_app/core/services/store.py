"""Keyed entity collections backing the CBT services.

Every entity type lives in its own collection with get/list/put/delete.
Collections hand out deep copies so callers never mutate stored state
outside of ``put``.
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from threading import Lock
from typing import Callable, Generic, Iterable, TypeVar

from cbt_app.core.errors import ConflictError, InternalError
from cbt_app.core.models import Exam, ExamSession, Question, Result, Student
from cbt_app.core.records import from_record, to_record

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Collection(Generic[T]):
    """In-memory collection keyed by the entity's ``id``."""

    def __init__(self, name: str, unique_fields: Iterable[str] = ()) -> None:
        self.name = name
        self._unique_fields = tuple(unique_fields)
        self._items: dict[str, T] = {}
        self._lock = Lock()

    def get(self, entity_id: str) -> T | None:
        with self._lock:
            entity = self._items.get(entity_id)
            return copy.deepcopy(entity) if entity is not None else None

    def list(self) -> list[T]:
        with self._lock:
            return [copy.deepcopy(entity) for entity in self._items.values()]

    def find(self, predicate: Callable[[T], bool]) -> T | None:
        with self._lock:
            for entity in self._items.values():
                if predicate(entity):
                    return copy.deepcopy(entity)
            return None

    def filter(self, predicate: Callable[[T], bool]) -> list[T]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._items.values() if predicate(e)]

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    def put(self, entity: T) -> T:
        with self._lock:
            self._check_unique(entity)
            staged = dict(self._items)
            staged[entity.id] = copy.deepcopy(entity)
            self._commit(staged)
        return entity

    def put_many(self, entities: list[T]) -> list[T]:
        with self._lock:
            staged = dict(self._items)
            for entity in entities:
                self._check_unique(entity, staged.values())
                staged[entity.id] = copy.deepcopy(entity)
            self._commit(staged)
        return entities

    def delete(self, entity_id: str) -> bool:
        with self._lock:
            if entity_id not in self._items:
                return False
            staged = dict(self._items)
            del staged[entity_id]
            self._commit(staged)
            return True

    def _commit(self, staged: dict[str, T]) -> None:
        """Swap in ``staged``; the previous contents stay in place if persisting fails."""
        previous = self._items
        self._items = staged
        try:
            self._persist()
        except Exception:
            self._items = previous
            raise

    def _check_unique(self, entity: T, existing: Iterable[T] | None = None) -> None:
        candidates = list(existing if existing is not None else self._items.values())
        for field_name in self._unique_fields:
            value = getattr(entity, field_name)
            for other in candidates:
                if other.id != entity.id and getattr(other, field_name) == value:
                    raise ConflictError(f"{self.name}: {field_name} '{value}' already exists.")

    def _persist(self) -> None:
        """Hook for durable subclasses; called with the lock held."""


class JsonFileCollection(Collection[T]):
    """Collection mirrored to a JSON array on disk after every write."""

    def __init__(
        self,
        name: str,
        entity_type: type[T],
        path: Path,
        unique_fields: Iterable[str] = (),
    ) -> None:
        super().__init__(name, unique_fields)
        self._entity_type = entity_type
        self._path = path
        self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            rows = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Could not read %s from %s: %s", self.name, self._path, exc)
            raise InternalError(f"Could not load {self.name}") from exc
        for row in rows or []:
            entity = from_record(self._entity_type, row)
            self._items[entity.id] = entity
        logger.info("Loaded %d %s from %s", len(self._items), self.name, self._path)

    def _persist(self) -> None:
        document = json.dumps([to_record(e) for e in self._items.values()], indent=2)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(document, encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            logger.error("Could not write %s to %s: %s", self.name, self._path, exc)
            raise InternalError(f"Could not save {self.name}") from exc


class CbtStore:
    """All entity collections used by the engine."""

    def __init__(
        self,
        questions: Collection[Question],
        exams: Collection[Exam],
        sessions: Collection[ExamSession],
        results: Collection[Result],
        students: Collection[Student],
    ) -> None:
        self.questions = questions
        self.exams = exams
        self.sessions = sessions
        self.results = results
        self.students = students

    @classmethod
    def in_memory(cls) -> "CbtStore":
        return cls(
            questions=Collection("questions"),
            exams=Collection("exams"),
            sessions=Collection("sessions"),
            results=Collection("results", unique_fields=("session_id",)),
            students=Collection("students", unique_fields=("student_id",)),
        )

    @classmethod
    def from_directory(cls, data_dir: Path) -> "CbtStore":
        data_dir = data_dir.resolve()
        return cls(
            questions=JsonFileCollection("questions", Question, data_dir / "questions.json"),
            exams=JsonFileCollection("exams", Exam, data_dir / "exams.json"),
            sessions=JsonFileCollection("sessions", ExamSession, data_dir / "sessions.json"),
            results=JsonFileCollection(
                "results", Result, data_dir / "results.json", unique_fields=("session_id",)
            ),
            students=JsonFileCollection(
                "students", Student, data_dir / "students.json", unique_fields=("student_id",)
            ),
        )
