"""Service for querying graded results and dashboard statistics."""

from __future__ import annotations

from dataclasses import dataclass

from cbt_app.constants.exam_constants import DEFAULT_TOP_SCORER_COUNT
from cbt_app.core.errors import NotFoundError
from cbt_app.core.grading import round_percentage
from cbt_app.core.models import Exam, Result
from cbt_app.core.services.store import Collection


@dataclass(slots=True)
class ExamStatsRow:
    """Per-exam snapshot returned to consumers."""

    exam_id: str
    title: str
    subject: str
    attempts: int
    average_percentage: int
    pass_count: int


@dataclass(slots=True)
class TopScorerRow:
    student_name: str
    student_id: str
    exam_id: str
    percentage: int
    score: int
    total_points: int


@dataclass(slots=True)
class DashboardSummary:
    total_exams: int
    active_exams: int
    total_questions: int
    total_results: int
    pass_rate: int
    exam_stats: list[ExamStatsRow]
    top_scorers: list[TopScorerRow]
    recent_results: list[Result]


class ResultsSummary:
    """Read side of the result store."""

    def __init__(self, results: Collection[Result]) -> None:
        self._results = results

    def get_result(self, result_id: str) -> Result:
        result = self._results.get(result_id)
        if result is None:
            raise NotFoundError.for_entity("Result", result_id)
        return result

    def get_result_for_session(self, session_id: str) -> Result:
        result = self._results.find(lambda r: r.session_id == session_id)
        if result is None:
            raise NotFoundError.for_entity("Result", session_id)
        return result

    def list_results(self, exam_id: str | None = None, student_id: str | None = None) -> list[Result]:
        """Results newest first, optionally filtered by exam and/or student."""
        results = self._results.filter(
            lambda r: (exam_id is None or r.exam_id == exam_id)
            and (student_id is None or r.student_id == student_id)
        )
        return sorted(results, key=lambda r: r.completed_at, reverse=True)

    def exam_stats(self, exams: list[Exam]) -> list[ExamStatsRow]:
        results = self._results.list()
        rows: list[ExamStatsRow] = []
        for exam in exams:
            exam_results = [r for r in results if r.exam_id == exam.id]
            rows.append(
                ExamStatsRow(
                    exam_id=exam.id,
                    title=exam.title,
                    subject=exam.subject,
                    attempts=len(exam_results),
                    average_percentage=round_percentage(
                        sum(r.percentage for r in exam_results), 100 * len(exam_results)
                    ),
                    pass_count=sum(1 for r in exam_results if r.passed),
                )
            )
        return rows

    def get_top_scorers(self, limit: int = DEFAULT_TOP_SCORER_COUNT) -> list[TopScorerRow]:
        """Return the top N results by percentage, earliest completion first on ties."""
        ranked = sorted(self._results.list(), key=lambda r: (-r.percentage, r.completed_at))
        return [
            TopScorerRow(
                student_name=r.student_name,
                student_id=r.student_id,
                exam_id=r.exam_id,
                percentage=r.percentage,
                score=r.score,
                total_points=r.total_points,
            )
            for r in ranked[:limit]
        ]

    def summarize(self, exams: list[Exam], total_questions: int, recent_limit: int = 5) -> DashboardSummary:
        results = self.list_results()
        passed = sum(1 for r in results if r.passed)
        return DashboardSummary(
            total_exams=len(exams),
            active_exams=sum(1 for e in exams if e.is_active),
            total_questions=total_questions,
            total_results=len(results),
            pass_rate=round_percentage(passed, len(results)),
            exam_stats=self.exam_stats(exams),
            top_scorers=self.get_top_scorers(),
            recent_results=results[:recent_limit],
        )
