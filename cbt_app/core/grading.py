"""Pure grading of a submitted answer map against a question set."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Sequence

from cbt_app.core.models import Question


@dataclass(frozen=True, slots=True)
class GradeReport:
    score: int
    total_points: int
    percentage: int
    passed: bool
    correct_answers: dict[str, bool]


def normalize_answer(value: str) -> str:
    return value.strip().casefold()


def is_correct(question: Question, answer: str | None) -> bool:
    """An answer is correct iff present and equal to the key ignoring case and outer whitespace."""
    if not answer:
        return False
    return normalize_answer(answer) == normalize_answer(question.correct_answer)


def round_percentage(score: int, total_points: int) -> int:
    """``round(100 * score / total_points)`` with halves rounded up; 0 when there are no points."""
    if total_points <= 0:
        return 0
    # floor(100*s/t + 1/2) in exact integer arithmetic
    return (200 * score + total_points) // (2 * total_points)


def grade(
    questions: Sequence[Question],
    answers: Mapping[str, str],
    passing_score: int,
) -> GradeReport:
    """Score ``answers`` against ``questions``.

    Unanswered questions count as incorrect. ``total_points`` is the point
    sum of exactly the graded questions, so attempts that drew different
    subsets are each measured against what they were shown.
    """
    correct_answers: dict[str, bool] = {}
    score = 0
    total_points = 0
    for question in questions:
        total_points += question.points
        correct = is_correct(question, answers.get(question.id))
        correct_answers[question.id] = correct
        if correct:
            score += question.points

    percentage = round_percentage(score, total_points)
    return GradeReport(
        score=score,
        total_points=total_points,
        percentage=percentage,
        passed=percentage >= passing_score,
        correct_answers=correct_answers,
    )
