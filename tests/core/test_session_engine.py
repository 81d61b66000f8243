"""
Tests for the exam session lifecycle, driven through CbtManager.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
import random

import pytest

from cbt_app.core.cbt_manager import CbtManager
from cbt_app.core.errors import (
    ConflictError,
    InternalError,
    NotFoundError,
    SessionClosedError,
    SessionExpiredError,
    ValidationError,
)
from cbt_app.core.models import Result
from cbt_app.core.services.exam_catalog import ExamCatalog
from cbt_app.core.services.question_bank import QuestionBank
from cbt_app.core.services.session_engine import SessionEngine, SessionLockRegistry
from cbt_app.core.services.store import CbtStore, Collection
from cbt_app.utils.settings import CbtSettings


@pytest.fixture
def weighted_exam(make_question, make_exam):
    questions = [
        make_question(question_text="Capital of Nigeria?", correct_answer="Abuja", points=1),
        make_question(question_text="2 + 2?", correct_answer="4", points=2),
        make_question(question_text="Formula of water?", correct_answer="H2O", points=3),
    ]
    exam = make_exam(question_ids=[q.id for q in questions])
    return exam, questions


class TestStartSession:
    def test_start_session_binds_fixed_question_list(self, manager, weighted_exam):
        exam, questions = weighted_exam

        session = manager.start_session(exam.id, "Ada Obi", "STU-1")

        assert session.session_question_ids == [q.id for q in questions]
        assert session.answers == {}
        assert session.current_question_index == 0
        assert session.is_completed is False

    def test_start_session_when_random_exam_then_draws_subset(self, manager, make_question, make_exam):
        pool = [make_question(question_text=f"Q{i}") for i in range(10)]
        exam = make_exam(number_of_questions_to_display=5, assign_random_questions=True)

        session = manager.start_session(exam.id, "Ada Obi", "STU-1")

        assert len(session.session_question_ids) == 5
        assert len(set(session.session_question_ids)) == 5
        assert set(session.session_question_ids) <= {q.id for q in pool}

    def test_start_session_when_exam_missing_then_not_found(self, manager):
        with pytest.raises(NotFoundError):
            manager.start_session("missing", "Ada Obi", "STU-1")

    def test_start_session_when_student_blank_then_validation_error(self, manager, weighted_exam):
        exam, _ = weighted_exam

        with pytest.raises(ValidationError) as excinfo:
            manager.start_session(exam.id, "  ", "")

        fields = {detail["field"] for detail in excinfo.value.details}
        assert fields == {"studentName", "studentId"}

    def test_start_session_when_concurrent_attempts_allowed_then_both_start(self, manager, weighted_exam):
        exam, _ = weighted_exam

        first = manager.start_session(exam.id, "Ada Obi", "STU-1")
        second = manager.start_session(exam.id, "Ada Obi", "STU-1")

        assert first.id != second.id

    def test_start_session_when_concurrent_attempts_disallowed_then_conflict(self, build_manager):
        manager = build_manager(allow_concurrent_attempts=False)
        question = manager.create_question({
            "question_text": "2 + 2?",
            "question_type": "short-answer",
            "subject": "Mathematics",
            "class_level": "SS1",
            "difficulty": "easy",
            "correct_answer": "4",
        })
        exam = manager.create_exam({
            "title": "Quick check",
            "subject": "Mathematics",
            "class_level": "SS1",
            "duration": 10,
            "passing_score": 50,
            "question_ids": [question.id],
        })
        active = manager.start_session(exam.id, "Ada Obi", "STU-1")

        with pytest.raises(ConflictError) as excinfo:
            manager.start_session(exam.id, "Ada Obi", "STU-1")
        assert excinfo.value.details == [{"field": "sessionId", "message": active.id}]

        manager.submit_session(active.id)
        assert manager.start_session(exam.id, "Ada Obi", "STU-1").id != active.id


class TestSaveProgress:
    def test_save_progress_overwrites_answers_without_merging(self, manager, weighted_exam):
        exam, questions = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")

        manager.save_progress(session.id, {questions[0].id: "Abuja", questions[1].id: "4"}, 1)
        updated = manager.save_progress(session.id, {questions[2].id: "H2O"}, 2)

        assert updated.answers == {questions[2].id: "H2O"}
        assert updated.current_question_index == 2
        assert manager.get_session(session.id).answers == {questions[2].id: "H2O"}

    def test_save_progress_when_index_negative_then_validation_error(self, manager, weighted_exam):
        exam, _ = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")

        with pytest.raises(ValidationError):
            manager.save_progress(session.id, {}, -1)

    def test_save_progress_when_session_missing_then_not_found(self, manager):
        with pytest.raises(NotFoundError):
            manager.save_progress("missing", {}, 0)

    def test_save_progress_when_submitted_then_session_closed(self, manager, weighted_exam):
        exam, questions = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        manager.submit_session(session.id, {questions[0].id: "Abuja"})

        with pytest.raises(SessionClosedError):
            manager.save_progress(session.id, {questions[1].id: "4"}, 1)

        assert manager.get_session(session.id).answers == {questions[0].id: "Abuja"}


class TestSubmitSession:
    def test_submit_grades_weighted_answers(self, manager, weighted_exam):
        exam, questions = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")

        result = manager.submit_session(session.id, {questions[2].id: " h2o "})

        assert result.score == 3
        assert result.total_points == 6
        assert result.percentage == 50
        assert result.passed is True
        assert result.correct_answers == {
            questions[0].id: False,
            questions[1].id: False,
            questions[2].id: True,
        }
        closed = manager.get_session(session.id)
        assert closed.is_completed is True
        assert closed.ended_at == result.completed_at

    def test_submit_without_answers_uses_saved_progress(self, manager, weighted_exam):
        exam, questions = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        manager.save_progress(session.id, {questions[1].id: "4"}, 1)

        result = manager.submit_session(session.id)

        assert result.score == 2
        assert result.answers == {questions[1].id: "4"}

    def test_submit_twice_returns_the_same_result(self, manager, weighted_exam):
        exam, questions = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")

        first = manager.submit_session(session.id, {questions[0].id: "Abuja"})
        second = manager.submit_session(session.id, {questions[0].id: "Lagos", questions[1].id: "4"})

        assert second.id == first.id
        assert second.score == first.score == 1
        assert len(manager.list_results()) == 1

    def test_concurrent_submissions_produce_one_result(self, manager, weighted_exam):
        exam, questions = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        answers = {q.id: q.correct_answer for q in questions}

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: manager.submit_session(session.id, answers), range(16)))

        assert {r.id for r in results} == {results[0].id}
        assert len(manager.list_results(exam_id=exam.id)) == 1

    def test_submit_grades_against_drawn_subset_only(self, manager, make_question, make_exam):
        for i in range(6):
            make_question(question_text=f"Q{i}", correct_answer="yes", points=i + 1)
        exam = make_exam(number_of_questions_to_display=2, assign_random_questions=True)
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        drawn = manager.get_session_questions(session.id)

        result = manager.submit_session(session.id, {q.id: "yes" for q in drawn})

        assert result.total_points == sum(q.points for q in drawn)
        assert result.percentage == 100
        assert set(result.correct_answers) == set(session.session_question_ids)

    def test_submit_when_session_missing_then_not_found(self, manager):
        with pytest.raises(NotFoundError):
            manager.submit_session("missing")


class TestTimeBudget:
    def test_time_remaining_counts_down_and_floors_at_zero(self, manager, weighted_exam, clock):
        exam, _ = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")

        assert manager.get_time_remaining(session) == 30 * 60
        clock.advance(minutes=10, seconds=30)
        assert manager.get_time_remaining(session) == 19 * 60 + 30
        clock.advance(hours=1)
        assert manager.get_time_remaining(session) == 0

    def test_time_remaining_when_submitted_then_zero(self, manager, weighted_exam):
        exam, _ = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        manager.submit_session(session.id)

        assert manager.get_time_remaining(manager.get_session(session.id)) == 0

    def test_time_remaining_when_exam_deleted_then_none(self, manager, weighted_exam):
        exam, _ = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        manager.delete_exam(exam.id)

        assert manager.get_time_remaining(session) is None

    def test_late_progress_is_accepted_when_deadline_not_enforced(self, manager, weighted_exam, clock):
        exam, questions = weighted_exam
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        clock.advance(hours=2)

        updated = manager.save_progress(session.id, {questions[0].id: "Abuja"}, 0)

        assert updated.answers == {questions[0].id: "Abuja"}


class TestEnforcedDeadline:
    @pytest.fixture
    def strict_manager(self, build_manager):
        return build_manager(enforce_deadline=True, deadline_grace_seconds=30)

    @pytest.fixture
    def strict_exam(self, strict_manager):
        question = strict_manager.create_question({
            "question_text": "2 + 2?",
            "question_type": "short-answer",
            "subject": "Mathematics",
            "class_level": "SS1",
            "difficulty": "easy",
            "correct_answer": "4",
        })
        exam = strict_manager.create_exam({
            "title": "Timed check",
            "subject": "Mathematics",
            "class_level": "SS1",
            "duration": 10,
            "passing_score": 50,
            "question_ids": [question.id],
        })
        return exam, question

    def test_progress_within_grace_is_accepted(self, strict_manager, strict_exam, clock):
        exam, question = strict_exam
        session = strict_manager.start_session(exam.id, "Ada Obi", "STU-1")
        clock.advance(minutes=10, seconds=20)

        updated = strict_manager.save_progress(session.id, {question.id: "4"}, 0)

        assert updated.answers == {question.id: "4"}

    def test_progress_after_grace_is_rejected(self, strict_manager, strict_exam, clock):
        exam, question = strict_exam
        session = strict_manager.start_session(exam.id, "Ada Obi", "STU-1")
        clock.advance(minutes=11)

        with pytest.raises(SessionExpiredError):
            strict_manager.save_progress(session.id, {question.id: "4"}, 0)

    def test_late_submission_grades_saved_progress(self, strict_manager, strict_exam, clock):
        exam, question = strict_exam
        session = strict_manager.start_session(exam.id, "Ada Obi", "STU-1")
        strict_manager.save_progress(session.id, {question.id: "5"}, 0)
        clock.advance(minutes=15)

        result = strict_manager.submit_session(session.id, {question.id: "4"})

        assert result.answers == {question.id: "5"}
        assert result.score == 0

    def test_expire_overdue_sessions_finalizes_only_expired(self, strict_manager, strict_exam, clock):
        exam, question = strict_exam
        overdue = strict_manager.start_session(exam.id, "Ada Obi", "STU-1")
        strict_manager.save_progress(overdue.id, {question.id: "4"}, 0)
        clock.advance(minutes=9)
        fresh = strict_manager.start_session(exam.id, "Bola Ade", "STU-2")
        clock.advance(minutes=1, seconds=1)

        expired = strict_manager.expire_overdue_sessions()

        assert [r.session_id for r in expired] == [overdue.id]
        assert expired[0].score == 1
        assert strict_manager.get_session(overdue.id).is_completed is True
        assert strict_manager.get_session(fresh.id).is_completed is False

    def test_expire_overdue_sessions_accepts_explicit_time(self, strict_manager, strict_exam, clock):
        exam, _ = strict_exam
        session = strict_manager.start_session(exam.id, "Ada Obi", "STU-1")

        assert strict_manager.expire_overdue_sessions(clock.now + timedelta(minutes=5)) == []
        assert len(strict_manager.expire_overdue_sessions(clock.now + timedelta(minutes=10))) == 1
        assert strict_manager.get_session(session.id).is_completed is True


class ResultsFailingOnce(Collection):
    """Results collection whose next write fails."""

    def __init__(self) -> None:
        super().__init__("results", unique_fields=("session_id",))
        self.failures = 1

    def _persist(self) -> None:
        if self.failures:
            self.failures -= 1
            raise InternalError("Could not save results")


@pytest.fixture
def store():
    return CbtStore.in_memory()


@pytest.fixture
def store_manager(store, clock):
    return CbtManager(store=store, settings=CbtSettings(), rng=random.Random(7), clock=clock)


def _short_answer_exam(manager, points=(1, 3)):
    questions = [
        manager.create_question({
            "question_text": f"Question worth {p}",
            "question_type": "short-answer",
            "subject": "Mathematics",
            "class_level": "SS1",
            "difficulty": "easy",
            "correct_answer": "yes",
            "points": p,
        })
        for p in points
    ]
    exam = manager.create_exam({
        "title": "Recovery check",
        "subject": "Mathematics",
        "class_level": "SS1",
        "duration": 30,
        "passing_score": 50,
        "question_ids": [q.id for q in questions],
    })
    return exam, questions


class TestFinalizeRecovery:
    def test_submit_after_failed_result_write_succeeds_on_retry(self, store):
        store.results = ResultsFailingOnce()
        manager = CbtManager(store=store, rng=random.Random(7))
        exam, questions = _short_answer_exam(manager)
        session = manager.start_session(exam.id, "Ada Obi", "STU-1")
        answers = {q.id: "yes" for q in questions}

        with pytest.raises(InternalError):
            manager.submit_session(session.id, answers)

        assert manager.get_session(session.id).is_completed is False
        assert manager.list_results() == []

        result = manager.submit_session(session.id, answers)

        assert result.score == 4
        assert manager.get_session(session.id).is_completed is True
        assert [r.id for r in manager.list_results()] == [result.id]

    def test_submit_adopts_result_left_by_interrupted_finalize(self, store, store_manager, clock):
        exam, questions = _short_answer_exam(store_manager)
        session = store_manager.start_session(exam.id, "Ada Obi", "STU-1")
        leftover = Result(
            id="leftover",
            session_id=session.id,
            exam_id=exam.id,
            student_name="Ada Obi",
            student_id="STU-1",
            score=1,
            total_points=4,
            percentage=25,
            passed=False,
            answers={questions[0].id: "yes"},
            correct_answers={questions[0].id: True, questions[1].id: False},
            completed_at=clock.now,
        )
        store.results.put(leftover)

        result = store_manager.submit_session(session.id, {q.id: "yes" for q in questions})

        assert result.id == "leftover"
        closed = store_manager.get_session(session.id)
        assert closed.is_completed is True
        assert closed.ended_at == leftover.completed_at
        assert closed.answers == leftover.answers
        assert len(store_manager.list_results()) == 1


class TestDeletedQuestions:
    def test_delete_question_in_active_session_is_refused(self, store_manager):
        exam, questions = _short_answer_exam(store_manager)
        session = store_manager.start_session(exam.id, "Ada Obi", "STU-1")

        with pytest.raises(ConflictError) as excinfo:
            store_manager.delete_question(questions[1].id)
        assert excinfo.value.details == [{"field": "sessionId", "message": session.id}]

        store_manager.submit_session(session.id)
        store_manager.delete_question(questions[1].id)

    def test_question_missing_from_store_is_graded_incorrect(self, store, store_manager):
        exam, questions = _short_answer_exam(store_manager)
        session = store_manager.start_session(exam.id, "Ada Obi", "STU-1")
        store.questions.delete(questions[1].id)

        result = store_manager.submit_session(session.id, {q.id: "yes" for q in questions})

        assert result.correct_answers == {questions[0].id: True, questions[1].id: False}
        assert list(result.correct_answers) == session.session_question_ids


class TestSessionLocks:
    @pytest.fixture
    def engine(self, store, clock):
        bank = QuestionBank(store.questions)
        catalog = ExamCatalog(store.exams, bank, clock=clock)
        return SessionEngine(store.sessions, store.results, catalog, bank, rng=random.Random(7), clock=clock)

    def test_unknown_session_ids_leave_no_locks(self, engine):
        for i in range(100):
            with pytest.raises(NotFoundError):
                engine.record_progress(f"missing-{i}", {}, 0)
            with pytest.raises(NotFoundError):
                engine.finalize(f"missing-{i}")

        assert len(engine._locks) == 0

    def test_lock_is_released_once_session_is_finalized(self, engine, store_manager):
        exam, questions = _short_answer_exam(store_manager)
        session = engine.create_session(exam.id, "Ada Obi", "STU-1")

        engine.record_progress(session.id, {questions[0].id: "yes"}, 0)
        assert len(engine._locks) == 1

        engine.finalize(session.id)
        with pytest.raises(SessionClosedError):
            engine.record_progress(session.id, {}, 0)
        engine.finalize(session.id)

        assert len(engine._locks) == 0

    def test_registry_release_forgets_the_lock(self):
        registry = SessionLockRegistry()
        first = registry.for_session("s1")

        assert registry.for_session("s1") is first
        registry.release("s1")
        registry.release("s1")

        assert len(registry) == 0
        assert registry.for_session("s1") is not first
