import logging
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
from pydantic import ValidationError

from compass_engine.cache import resource_cache
from compass_engine.catalog import parse_macro_code
from compass_engine.config import settings
from compass_engine.errors import MissingVectorData, ReferenceDataError, RowSkipped, SourceUnavailableError
from compass_engine.models import AxisReference, CategoryVector, MacroCode
from compass_engine.sources import fetch_table, rejected_rows, row_numbers

logger = logging.getLogger(__name__)

MAX_AXES = 6
MIN_COLUMNS = 2 + 3  # label, macro cell, one axis triple


class CategoryVectorStore:
    """Reference vectors per macro cell, in catalog order."""

    def __init__(self, vectors: Iterable[CategoryVector], skipped_rows: Optional[List[RowSkipped]] = None, source: str = "<memory>"):
        self.source = source
        self.skipped_rows: Tuple[RowSkipped, ...] = tuple(skipped_rows or ())
        self._by_macro: Dict[MacroCode, List[CategoryVector]] = {}
        for vector in vectors:
            self._by_macro.setdefault(vector.macro_code, []).append(vector)

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, source: str = "<frame>") -> "CategoryVectorStore":
        """
        Parses the vector table: label, macro cell, then up to six
        (axis name, axis code, score) triples per row.
        """
        if frame is None or frame.empty:
            raise ReferenceDataError(f"Category vector table is empty: {source}")

        vectors: List[CategoryVector] = []
        skipped: List[RowSkipped] = rejected_rows(frame, source)
        for rejected in skipped:
            logger.warning(f"Skipping vector row {rejected.row_number} in {source}: {rejected.reason}")
        for row_number, values in zip(row_numbers(frame), frame.itertuples(index=False, name=None)):
            cells = [str(v).strip() for v in values]
            # Trailing empty cells do not count towards the row width
            while cells and not cells[-1]:
                cells.pop()
            try:
                vectors.append(_parse_vector_row(cells))
            except (ValueError, ValidationError) as e:
                reason = str(e).splitlines()[0]
                skipped.append(RowSkipped(source, row_number, reason, dict(zip(frame.columns, cells)), cells[0] if cells else None))
                logger.warning(f"Skipping vector row {row_number} in {source}: {reason}")

        skipped.sort(key=lambda s: s.row_number)
        logger.info(f"Loaded {len(vectors)} category vectors from {source} ({len(skipped)} rows skipped)")
        return cls(vectors, skipped, source)

    @property
    def macro_codes(self) -> List[MacroCode]:
        return list(self._by_macro)

    def vectors_for(self, macro_code: MacroCode) -> Tuple[CategoryVector, ...]:
        return tuple(self._by_macro.get(MacroCode(macro_code), ()))

    def require(self, macro_code: MacroCode) -> Tuple[CategoryVector, ...]:
        """
        Raises:
            MissingVectorData: If the macro cell has no vectors.
        """
        vectors = self.vectors_for(macro_code)
        if not vectors:
            raise MissingVectorData(MacroCode(macro_code).value)
        return vectors

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_macro.values())


def _parse_vector_row(cells: List[str]) -> CategoryVector:
    if len(cells) < MIN_COLUMNS:
        raise ValueError(f"expected at least {MIN_COLUMNS} columns, got {len(cells)}")
    label, macro_cell = cells[0], cells[1]
    if not label:
        raise ValueError("missing category label")
    try:
        macro_code = parse_macro_code(macro_cell)
    except ValueError:
        raise ValueError(f"invalid macro cell '{macro_cell}'")

    axes = []
    for start in range(2, min(len(cells), 2 + MAX_AXES * 3), 3):
        triple = cells[start:start + 3]
        if len(triple) < 3 or not triple[1]:
            break
        try:
            score = float(triple[2])
        except ValueError:
            raise ValueError(f"non-numeric score '{triple[2]}' for axis {triple[1]}")
        axes.append(AxisReference(axis_name=triple[0], axis_code=triple[1], score=score))

    if not axes:
        raise ValueError("no axis scores")
    return CategoryVector(label=label, macro_code=macro_code, axes=tuple(axes))


async def _load_vectors(location: str) -> CategoryVectorStore:
    try:
        frame = await fetch_table(location)
    except SourceUnavailableError as e:
        logger.error(f"Category vectors unavailable: {e}")
        raise ReferenceDataError(f"Could not load category vectors from {location}: {e}") from e
    return CategoryVectorStore.from_frame(frame, source=location)


async def load_vectors(source: Optional[str] = None) -> CategoryVectorStore:
    location = source or settings.vectors_source
    return await resource_cache.get(f"vectors:{location}", lambda: _load_vectors(location))
