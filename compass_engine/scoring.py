import logging
from typing import AbstractSet, Dict, Iterable, Mapping, Optional, Tuple

from compass_engine.models import Axis, Question

logger = logging.getLogger(__name__)

# --- Constants ---
NEUTRAL_VALUE = 0.5
# (value - 0.5) * 4 spans [-2, 2]; dividing by count * 2 normalises to [-1, 1]
CONTRIBUTION_SCALE = 4
MAX_CONTRIBUTION = 2
SCORE_LIMIT = 100.0

PRIMARY_AXES: Tuple[Axis, ...] = (Axis.ECONOMIC, Axis.AUTHORITY, Axis.CULTURAL)


def contribution(value: float, direction: int) -> float:
    """Signed contribution of a single answer, in [-2, 2]."""
    return (value - NEUTRAL_VALUE) * CONTRIBUTION_SCALE * direction


def _clamp(score: float) -> float:
    return max(-SCORE_LIMIT, min(SCORE_LIMIT, score))


def score_answers(
    questions: Iterable[Question],
    answers: Mapping[int, float],
    skipped: AbstractSet[int] = frozenset(),
) -> Dict[str, float]:
    """
    Projects answers onto per-axis scores in [-100, 100].

    Only questions that have an answer and are not skipped count. An axis
    whose questions are all unanswered or skipped scores 0. The result does
    not depend on the order answers were given.

    Args:
        questions: The scheduled questions to score over.
        answers: Answer value per question id, each in [0, 1].
        skipped: Ids whose answers are withdrawn from scoring.

    Returns:
        Score per axis key (primary axis name or supplementary axis code)
        for every axis present in ``questions``.
    """
    totals: Dict[str, float] = {}
    counts: Dict[str, int] = {}

    for q in questions:
        key = q.axis_key
        totals.setdefault(key, 0.0)
        counts.setdefault(key, 0)
        if q.id in skipped or q.id not in answers:
            continue
        totals[key] += contribution(answers[q.id], q.direction)
        counts[key] += 1

    scores: Dict[str, float] = {}
    for key, total in totals.items():
        count = counts[key]
        scores[key] = _clamp(total / (count * MAX_CONTRIBUTION) * 100) if count else 0.0
    return scores


def phase_one_scores(
    questions: Iterable[Question],
    answers: Mapping[int, float],
    skipped: AbstractSet[int] = frozenset(),
) -> Dict[str, float]:
    """Economic, authority and cultural scores; always all three keys."""
    phase_one = [q for q in questions if q.phase == 1]
    scores = score_answers(phase_one, answers, skipped)
    return {axis.value: scores.get(axis.value, 0.0) for axis in PRIMARY_AXES}


def supplementary_scores(
    questions: Iterable[Question],
    answers: Mapping[int, float],
    skipped: AbstractSet[int] = frozenset(),
) -> Dict[str, float]:
    """Scores keyed by supplementary axis code, from phase 2 questions only."""
    phase_two = [q for q in questions if q.phase == 2]
    return score_answers(phase_two, answers, skipped)


def axis_counts(questions: Iterable[Question], ids: Optional[AbstractSet[int]] = None) -> Dict[str, int]:
    """
    Counts questions per axis key; restricted to ``ids`` when given.
    """
    counts: Dict[str, int] = {}
    for q in questions:
        if ids is not None and q.id not in ids:
            continue
        counts[q.axis_key] = counts.get(q.axis_key, 0) + 1
    return counts
