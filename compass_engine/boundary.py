import logging
from dataclasses import dataclass
from typing import AbstractSet, Dict, List, Mapping, Optional, Sequence

from compass_engine.config import settings
from compass_engine.models import Axis, Boundary, Question, RemovalPriority, TiebreakerQuestion

logger = logging.getLogger(__name__)

# Boundary -> (axis, signed boundary position as a multiple of the macro boundary)
BOUNDARY_POSITIONS: Dict[Boundary, tuple] = {
    Boundary.LEFT_CENTER: (Axis.ECONOMIC, -1),
    Boundary.CENTER_RIGHT: (Axis.ECONOMIC, 1),
    Boundary.LIB_CENTER: (Axis.AUTHORITY, -1),
    Boundary.CENTER_AUTH: (Axis.AUTHORITY, 1),
}


@dataclass(frozen=True)
class Substitution:
    slot: int
    displaced_id: int
    tiebreaker_id: int


class BoundaryDetector:
    """
    Finds provisional scores sitting close to a macro boundary and plans
    which scheduled questions get swapped for tiebreakers.
    """

    def __init__(self, band: Optional[float] = None, boundary: Optional[float] = None, max_substitutions: int = 6):
        self.band = settings.default_boundary_band if band is None else band
        self.boundary = settings.macro_boundary if boundary is None else boundary
        if self.band <= 0:
            raise ValueError("Boundary band must be positive")
        self.max_substitutions = max_substitutions

    def detect(self, scores: Mapping[str, float]) -> List[Boundary]:
        """
        Returns the boundaries whose position is within ``band`` of the
        matching provisional score, in Boundary declaration order.
        """
        triggered = []
        for boundary, (axis, sign) in BOUNDARY_POSITIONS.items():
            score = scores.get(axis.value, 0.0)
            if abs(score - sign * self.boundary) <= self.band:
                triggered.append(boundary)
        if triggered:
            logger.info(f"Boundary proximity detected: {[b.value for b in triggered]} (scores={dict(scores)})")
        return triggered

    def plan(
        self,
        schedule: Sequence[int],
        questions: Mapping[int, Question],
        tail_start: int,
        answered: AbstractSet[int],
        tiebreakers: Mapping[Boundary, Sequence[TiebreakerQuestion]],
        boundaries: Sequence[Boundary],
        skipped: AbstractSet[int] = frozenset(),
        skip_limit: float = 1.0,
    ) -> List[Substitution]:
        """
        Plans tiebreaker substitutions into the unanswered tail of a schedule.

        Args:
            schedule: Question id per slot.
            questions: Question lookup by id.
            tail_start: First slot index eligible for displacement.
            answered: Ids with a live (non-skipped) answer; never displaced.
            tiebreakers: Available tiebreakers per boundary, in catalog order.
            boundaries: Triggered boundaries.
            skipped: Currently skipped ids.
            skip_limit: Skip cap per axis; a displacement that would leave
                its axis above the cap is passed over.

        Returns:
            Substitutions to apply, at most ``max_substitutions``. The plan
            never changes the number of slots.
        """
        if not boundaries:
            return []

        priorities = [RemovalPriority.FIRST]
        if len(boundaries) >= 2:
            priorities.append(RemovalPriority.SECOND)

        tail = [
            (slot, qid) for slot, qid in enumerate(schedule)
            if slot >= tail_start and qid not in answered
        ]
        candidates = []
        for priority in priorities:
            for slot, qid in tail:
                q = questions.get(qid)
                if q is not None and getattr(q, "removal_priority", None) == priority:
                    candidates.append((slot, q))

        ordered = self._interleave(tiebreakers, boundaries, set(schedule))
        limit = min(len(ordered), self.max_substitutions)

        scheduled_counts: Dict[str, int] = {}
        skipped_counts: Dict[str, int] = {}
        for qid in schedule:
            q = questions.get(qid)
            if q is None:
                continue
            scheduled_counts[q.axis_key] = scheduled_counts.get(q.axis_key, 0) + 1
            if qid in skipped:
                skipped_counts[q.axis_key] = skipped_counts.get(q.axis_key, 0) + 1

        substitutions: List[Substitution] = []
        for slot, displaced in candidates:
            if len(substitutions) >= limit:
                break
            tiebreaker = ordered[len(substitutions)]
            axis = displaced.axis_key
            remaining = scheduled_counts[axis] - 1 + (1 if tiebreaker.axis_key == axis else 0)
            remaining_skipped = skipped_counts.get(axis, 0) - (1 if displaced.id in skipped else 0)
            if remaining_skipped and remaining_skipped / remaining > skip_limit:
                logger.debug(f"Keeping question {displaced.id}: displacing it would break the {axis} skip cap")
                continue
            scheduled_counts[axis] = remaining
            if tiebreaker.axis_key != axis:
                scheduled_counts[tiebreaker.axis_key] = scheduled_counts.get(tiebreaker.axis_key, 0) + 1
            skipped_counts[axis] = remaining_skipped
            substitutions.append(Substitution(slot=slot, displaced_id=displaced.id, tiebreaker_id=tiebreaker.id))

        if len(substitutions) < len(ordered):
            logger.info(f"Only {len(substitutions)} of {len(ordered)} tiebreakers fit into the remaining schedule")
        return substitutions

    @staticmethod
    def _interleave(
        tiebreakers: Mapping[Boundary, Sequence[TiebreakerQuestion]],
        boundaries: Sequence[Boundary],
        exclude: AbstractSet[int],
    ) -> List[TiebreakerQuestion]:
        """Round-robin across boundaries so each triggered boundary gets its share."""
        queues = [[tb for tb in tiebreakers.get(b, ()) if tb.id not in exclude] for b in boundaries]
        ordered: List[TiebreakerQuestion] = []
        while any(queues):
            for queue in queues:
                if queue:
                    ordered.append(queue.pop(0))
        return ordered
