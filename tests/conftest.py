import random
from datetime import datetime, timedelta, timezone

import pytest

from cbt_app.core.cbt_manager import CbtManager
from cbt_app.core.services.store import CbtStore
from cbt_app.utils.settings import CbtSettings


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def build_manager(clock):
    """Factory for managers over a fresh in-memory store with custom settings."""

    def factory(**settings) -> CbtManager:
        return CbtManager(
            store=CbtStore.in_memory(),
            settings=CbtSettings(**settings),
            rng=random.Random(7),
            clock=clock,
        )

    return factory


@pytest.fixture
def manager(build_manager):
    return build_manager()


@pytest.fixture
def make_question(manager):
    """Create a stored short-answer Mathematics/SS1 question, overriding any field."""

    def factory(**overrides):
        data = {
            "question_text": "What is $2 + 2$?",
            "question_type": "short-answer",
            "subject": "Mathematics",
            "class_level": "SS1",
            "difficulty": "easy",
            "correct_answer": "4",
            "points": 1,
        }
        data.update(overrides)
        return manager.create_question(data)

    return factory


@pytest.fixture
def make_exam(manager):
    """Create a stored Mathematics/SS1 exam, overriding any field."""

    def factory(**overrides):
        data = {
            "title": "Algebra Test",
            "subject": "Mathematics",
            "class_level": "SS1",
            "duration": 30,
            "passing_score": 50,
            "question_ids": [],
        }
        data.update(overrides)
        return manager.create_exam(data)

    return factory
