"""Utilities for importing a question bank from a human-friendly text file.

File format (repeat blocks separated by blank lines or '---'):

    Q: Question text (supports markdown + LaTeX). Additional lines until the
       next marker are treated as part of the question.
    TYPE: multiple-choice | true-false | short-answer
    SUBJECT: Mathematics
    CLASS: SS1
    DIFFICULTY: easy | medium | hard   (optional, defaults to medium)
    POINTS: 2                          (optional, defaults to 1)
    A: First option text               (multiple-choice only, A-H)
    B: Second option text
    CORRECT: B                         (an option letter for multiple-choice,
                                        otherwise the literal answer)

Example:

    Q: What is $2 + 2$?
    TYPE: multiple-choice
    SUBJECT: Mathematics
    CLASS: JSS1
    A: 3
    B: 4
    CORRECT: B

``SUBJECT`` and ``CLASS`` may be omitted when the caller supplies defaults
for the whole file. The importer only parses; field validation happens in
``QuestionBank`` when the rows are stored.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cbt_app.constants.exam_constants import DEFAULT_QUESTION_POINTS, OPTION_LETTERS


class QuestionImportError(Exception):
    """Raised when a question bank file cannot be parsed."""


@dataclass(slots=True)
class ImportedQuestionBank:
    """Container for parsed question rows ready for ``QuestionBank.create_questions``."""

    source_path: Path | None
    rows: list[dict[str, Any]]


_FIELD_KEYS = {
    "TYPE": "question_type",
    "SUBJECT": "subject",
    "CLASS": "class_level",
    "DIFFICULTY": "difficulty",
    "POINTS": "points",
    "CORRECT": "correct",
}


def load_questions_from_file(
    file_path: Path,
    subject: str | None = None,
    class_level: str | None = None,
) -> ImportedQuestionBank:
    text = file_path.read_text(encoding="utf-8")
    bank = parse_question_text(text, subject=subject, class_level=class_level)
    bank.source_path = file_path
    return bank


def parse_question_text(
    text: str,
    subject: str | None = None,
    class_level: str | None = None,
) -> ImportedQuestionBank:
    rows = [
        _parse_block(block, number, subject, class_level)
        for number, block in enumerate(_split_blocks(text), start=1)
    ]
    if not rows:
        raise QuestionImportError("Question file did not contain any questions.")
    return ImportedQuestionBank(source_path=None, rows=rows)


def _split_blocks(text: str) -> list[str]:
    blocks: list[str] = []
    current_block: list[str] = []
    for raw_line in text.splitlines():
        stripped = raw_line.strip()
        if stripped == "---" or not stripped:
            if current_block:
                blocks.append("\n".join(current_block))
                current_block = []
            continue
        current_block.append(raw_line)
    if current_block:
        blocks.append("\n".join(current_block))
    return blocks


def _parse_block(
    block: str,
    number: int,
    default_subject: str | None,
    default_class_level: str | None,
) -> dict[str, Any]:
    question_lines: list[str] = []
    options: dict[str, str] = {}
    values: dict[str, str] = {}
    current_section: str | None = None

    for raw_line in block.splitlines():
        line = raw_line.strip()
        key, sep, rest = line.partition(":")
        key = key.strip().upper()

        if key == "Q" and sep:
            question_lines = [rest.strip()]
            current_section = "Q"
        elif key in _FIELD_KEYS and sep:
            values[_FIELD_KEYS[key]] = rest.strip()
            current_section = None
        elif key in OPTION_LETTERS and sep:
            options[key] = rest.strip()
            current_section = key
        elif current_section == "Q":
            question_lines.append(line)
        elif current_section in OPTION_LETTERS:
            options[current_section] = f"{options[current_section]}\n{line}"
        else:
            raise QuestionImportError(
                f"Question {number}: text outside of a known section: '{line}'."
            )

    question_text = "\n".join(question_lines).strip()
    if not question_text:
        raise QuestionImportError(f"Question {number}: question text missing (Q: ...).")

    question_type = (values.get("question_type") or ("multiple-choice" if options else "short-answer")).lower()
    option_list = _ordered_options(options, number)
    correct = values.get("correct", "")
    if question_type == "multiple-choice":
        correct = _resolve_option_letter(correct, option_list, number)

    points = DEFAULT_QUESTION_POINTS
    if values.get("points"):
        try:
            points = int(values["points"])
        except ValueError as exc:
            raise QuestionImportError(f"Question {number}: POINTS must be an integer.") from exc

    return {
        "question_text": question_text,
        "question_type": question_type,
        "subject": values.get("subject") or default_subject,
        "class_level": values.get("class_level") or default_class_level,
        "difficulty": (values.get("difficulty") or "medium").lower(),
        "points": points,
        "options": option_list or None,
        "correct_answer": correct,
    }


def _ordered_options(options: dict[str, str], number: int) -> list[str]:
    letters = [letter for letter in OPTION_LETTERS if letter in options]
    if letters != list(OPTION_LETTERS[: len(letters)]):
        raise QuestionImportError(f"Question {number}: options must be lettered consecutively from A.")
    return [options[letter].strip() for letter in letters]


def _resolve_option_letter(correct: str, options: list[str], number: int) -> str:
    letter = correct.strip().upper()
    if letter not in OPTION_LETTERS[: len(options)]:
        raise QuestionImportError(
            f"Question {number}: CORRECT must be one of the option letters A-{OPTION_LETTERS[max(len(options) - 1, 0)]}."
        )
    return options[OPTION_LETTERS.index(letter)]
