import logging
import random
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from compass_engine.models import Axis, Question

logger = logging.getLogger(__name__)

# --- Buckets ---
# Fixed order; also the tie-break order when substituting from another bucket.
BUCKETS: Dict[str, Tuple[Axis, int]] = {
    "econ_left": (Axis.ECONOMIC, -1),
    "econ_right": (Axis.ECONOMIC, 1),
    "auth_lib": (Axis.AUTHORITY, -1),
    "auth_auth": (Axis.AUTHORITY, 1),
    "cult_prog": (Axis.CULTURAL, -1),
    "cult_trad": (Axis.CULTURAL, 1),
}

BUCKET_ORDER: Tuple[str, ...] = tuple(BUCKETS)

OPPOSITE_BUCKET: Dict[str, str] = {
    "econ_left": "econ_right",
    "econ_right": "econ_left",
    "auth_lib": "auth_auth",
    "auth_auth": "auth_lib",
    "cult_prog": "cult_trad",
    "cult_trad": "cult_prog",
}

# Six screens of five; each bucket contributes five questions overall.
DEFAULT_SCREEN_PLANS: Tuple[Tuple[str, ...], ...] = (
    ("econ_left", "econ_right", "auth_lib", "auth_auth", "cult_prog"),
    ("econ_left", "econ_right", "auth_lib", "auth_auth", "cult_trad"),
    ("econ_left", "econ_right", "auth_lib", "cult_prog", "cult_trad"),
    ("econ_left", "auth_lib", "auth_auth", "cult_prog", "cult_trad"),
    ("econ_right", "auth_lib", "auth_auth", "cult_prog", "cult_trad"),
    ("econ_left", "econ_right", "auth_auth", "cult_prog", "cult_trad"),
)


def bucket_for(question: Question) -> Optional[str]:
    """Returns the bucket name for a phase 1 question, or None if it has no primary axis."""
    axis = getattr(question, "axis", None)
    for name, (bucket_axis, direction) in BUCKETS.items():
        if axis == bucket_axis and question.direction == direction:
            return name
    return None


class BalancedSampler:
    """
    Draws a phase 1 question schedule balanced across axis and direction.

    Questions are split into six buckets (axis x agree direction). Each screen
    plan names the buckets it draws from, one question per entry. Randomness
    only comes from the supplied ``rng``; the plan and the substitution rule
    are deterministic.
    """

    def __init__(self, screen_plans: Sequence[Sequence[str]] = DEFAULT_SCREEN_PLANS, rng: Optional[random.Random] = None):
        unknown = {b for plan in screen_plans for b in plan if b not in BUCKETS}
        if unknown:
            raise ValueError(f"Unknown sampler buckets: {', '.join(sorted(unknown))}")
        self.screen_plans = [list(plan) for plan in screen_plans]
        self.rng = rng or random.Random()

    @property
    def planned_count(self) -> int:
        return sum(len(plan) for plan in self.screen_plans)

    def partition(self, questions: Iterable[Question]) -> Dict[str, List[Question]]:
        buckets: Dict[str, List[Question]] = {name: [] for name in BUCKET_ORDER}
        for q in questions:
            name = bucket_for(q)
            if name is None:
                logger.debug(f"Question {q.id} has no primary axis bucket; not sampled")
                continue
            buckets[name].append(q)
        return buckets

    def _substitute(self, wanted: str, buckets: Dict[str, List[Question]]) -> Optional[str]:
        """
        Picks the bucket to draw from when ``wanted`` is empty.

        Prefers the opposite direction on the same axis, then the bucket with
        the most questions left (ties go to the earlier bucket in BUCKET_ORDER).
        """
        opposite = OPPOSITE_BUCKET[wanted]
        if buckets[opposite]:
            return opposite
        best: Optional[str] = None
        for name in BUCKET_ORDER:
            if buckets[name] and (best is None or len(buckets[name]) > len(buckets[best])):
                best = name
        return best

    def draw(self, questions: Iterable[Question]) -> List[List[Question]]:
        """
        Builds the screens.

        Args:
            questions: Candidate pool (phase 1 core questions).

        Returns:
            One list of questions per screen plan, each shuffled internally.
        """
        buckets = self.partition(questions)
        for name in BUCKET_ORDER:
            self.rng.shuffle(buckets[name])

        screens: List[List[Question]] = []
        for index, plan in enumerate(self.screen_plans, start=1):
            screen: List[Question] = []
            for wanted in plan:
                source = wanted if buckets[wanted] else self._substitute(wanted, buckets)
                if source is None:
                    logger.warning(f"Question pool exhausted while filling screen {index}; screen is short")
                    break
                if source != wanted:
                    logger.info(f"Bucket {wanted} empty on screen {index}; substituting from {source}")
                screen.append(buckets[source].pop())
            self.rng.shuffle(screen)
            screens.append(screen)
        return screens
