import logging
import math
from typing import Dict, Mapping, Optional, Sequence

import numpy as np

from compass_engine.classifier import macro_label
from compass_engine.errors import MissingVectorData
from compass_engine.grid import CategoryGrid
from compass_engine.models import CategoryVector, MacroCode, MatchResult
from compass_engine.vectors import CategoryVectorStore

logger = logging.getLogger(__name__)

DEFAULT_WEIGHT = 1.0


def weighted_distance(
    user: Mapping[str, float],
    vector: CategoryVector,
    weights: Optional[Mapping[str, float]] = None,
) -> float:
    """
    Weighted Euclidean distance between a respondent and a reference vector.

    Only the vector's axes are compared; a respondent axis with no score
    counts as 0.
    """
    if not vector.axes:
        return math.inf
    codes = [a.axis_code for a in vector.axes]
    reference = np.array([a.score for a in vector.axes], dtype=float)
    position = np.array([user.get(code, 0.0) for code in codes], dtype=float)
    w = np.array([(weights or {}).get(code, DEFAULT_WEIGHT) for code in codes], dtype=float)
    return float(np.sqrt(np.sum(w * (position - reference) ** 2)))


def nearest(
    user: Mapping[str, float],
    vectors: Sequence[CategoryVector],
    weights: Optional[Mapping[str, float]] = None,
) -> Optional[CategoryVector]:
    """Closest vector; on equal distance the earlier vector in ``vectors`` wins."""
    best: Optional[CategoryVector] = None
    best_distance = math.inf
    for vector in vectors:
        distance = weighted_distance(user, vector, weights)
        if distance < best_distance:
            best, best_distance = vector, distance
    return best


class FineMatcher:
    """
    Resolves a macro cell plus supplementary scores to a fine category.

    Falls back to the macro cell's generic label when the cell has no
    reference vectors.
    """

    def __init__(
        self,
        store: CategoryVectorStore,
        grid: Optional[CategoryGrid] = None,
        axis_weights: Optional[Dict[str, float]] = None,
    ):
        self.store = store
        self.grid = grid
        self.axis_weights = dict(axis_weights or {})
        negative = {code: w for code, w in self.axis_weights.items() if w < 0}
        if negative:
            raise ValueError(f"Axis weights must be non-negative: {negative}")

    def _fallback_label(self, macro_code: MacroCode) -> str:
        if self.grid is not None:
            return self.grid.macro_label(macro_code)
        return macro_label(macro_code)

    def closest(self, macro_code: MacroCode, supplementary_scores: Mapping[str, float]) -> MatchResult:
        macro_code = MacroCode(macro_code)
        try:
            vectors = self.store.require(macro_code)
        except MissingVectorData as e:
            logger.warning(f"{e}; falling back to macro label")
            return MatchResult(label=self._fallback_label(macro_code), macro_code=macro_code, fallback=True)

        best = nearest(supplementary_scores, vectors, self.axis_weights)
        if best is None:
            logger.warning(f"Vectors for {macro_code.value} carry no axis scores; falling back to macro label")
            return MatchResult(label=self._fallback_label(macro_code), macro_code=macro_code, fallback=True)
        distance = weighted_distance(supplementary_scores, best, self.axis_weights)
        logger.debug(f"Closest category in {macro_code.value}: {best.label} (distance {distance:.2f})")
        return MatchResult(label=best.label, macro_code=macro_code, distance=distance)
