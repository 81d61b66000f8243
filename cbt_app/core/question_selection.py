"""Question-set resolution for exam sessions.

An exam either presents a fixed, authored list of questions or draws a
random subset of ``numberOfQuestionsToDisplay`` questions from a candidate
pool. The pool is the exam's authored bank restricted to the exam's subject
and class level; an exam with no authored bank draws from every question of
that subject and class level.

Randomness is always injected as a ``random.Random`` so callers (and tests)
control reproducibility with a seed.
"""

from __future__ import annotations

import random
from typing import Sequence

from cbt_app.core.errors import InsufficientQuestionsError
from cbt_app.core.models import Exam, FixedQuestionSet, Question, RandomQuestionSet


def select_subset(pool: Sequence[str], n: int, rng: random.Random) -> list[str]:
    """Draw ``n`` distinct ids from ``pool`` without replacement.

    Raises:
        InsufficientQuestionsError: if the pool holds fewer than ``n`` ids.
    """
    unique_pool = list(dict.fromkeys(pool))
    if n > len(unique_pool):
        raise InsufficientQuestionsError(requested=n, available=len(unique_pool))
    return rng.sample(unique_pool, n)


def candidate_pool(exam: Exam, candidates: Sequence[Question]) -> list[str]:
    """Return the ids a random subset may be drawn from, in a stable order."""
    eligible = [
        q.id for q in candidates
        if q.subject == exam.subject and q.class_level == exam.class_level
    ]
    if not exam.question_ids:
        return eligible
    eligible_ids = set(eligible)
    return [qid for qid in dict.fromkeys(exam.question_ids) if qid in eligible_ids]


def resolve_question_set(
    exam: Exam,
    candidates: Sequence[Question],
    randomize: bool,
    rng: random.Random | None = None,
) -> list[str]:
    """Resolve the ordered question ids a single attempt will see.

    Args:
        exam: Exam definition.
        candidates: Every stored question for the exam's subject and class level.
        randomize: Shuffle a fixed list, or draw a fresh subset per attempt.
        rng: Source of randomness for per-attempt draws.

    Without ``randomize`` a random-subset exam draws with a generator seeded
    by the exam id, so every attempt of that exam sees the same subset.
    """
    plan = exam.question_set
    rng = rng or random.Random()

    if isinstance(plan, FixedQuestionSet):
        resolved = list(plan.question_ids)
        if randomize:
            rng.shuffle(resolved)
        return resolved

    if not isinstance(plan, RandomQuestionSet):
        raise TypeError(f"Unsupported question set plan: {plan!r}")
    pool = candidate_pool(exam, candidates)
    draw_rng = rng if randomize else random.Random(exam.id)
    return select_subset(pool, plan.count, draw_rng)
