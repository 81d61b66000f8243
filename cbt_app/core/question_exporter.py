"""Utilities for exporting a question bank to the plain-text import format."""

from __future__ import annotations

from pathlib import Path

from cbt_app.constants.exam_constants import OPTION_LETTERS
from cbt_app.core.grading import normalize_answer
from cbt_app.core.models import Question


def save_questions_to_file(file_path: Path, questions: list[Question]) -> None:
    """Persist the provided questions to disk in the text import format."""

    if not questions:
        raise ValueError("Cannot export an empty question bank.")

    file_path = file_path.resolve()
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(serialize_questions(questions), encoding="utf-8")


def serialize_questions(questions: list[Question]) -> str:
    blocks = [_serialize_question(question) for question in questions]
    return "\n\n---\n\n".join(blocks) + "\n"


def _serialize_question(question: Question) -> str:
    if len(question.options or []) > len(OPTION_LETTERS):
        raise ValueError(
            f"Question {question.id} has more than {len(OPTION_LETTERS)} options and cannot be exported."
        )
    question_lines = question.question_text.splitlines() or [question.question_text]
    lines = [f"Q: {question_lines[0]}", *question_lines[1:]]
    lines.append(f"TYPE: {question.question_type}")
    lines.append(f"SUBJECT: {question.subject}")
    lines.append(f"CLASS: {question.class_level}")
    lines.append(f"DIFFICULTY: {question.difficulty}")
    lines.append(f"POINTS: {question.points}")

    correct = question.correct_answer
    for idx, option_text in enumerate(question.options or []):
        letter = OPTION_LETTERS[idx]
        option_lines = option_text.splitlines() or [option_text]
        lines.append(f"{letter}: {option_lines[0]}")
        lines.extend(option_lines[1:])
        if normalize_answer(option_text) == normalize_answer(question.correct_answer):
            correct = letter

    lines.append(f"CORRECT: {correct}")
    return "\n".join(lines)
