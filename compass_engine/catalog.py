import logging
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd
from pydantic import ValidationError

from compass_engine.cache import resource_cache
from compass_engine.config import settings
from compass_engine.errors import CatalogParseError, RowSkipped, SourceUnavailableError
from compass_engine.models import (
    Axis,
    Boundary,
    MacroCode,
    Question,
    RefinementQuestion,
    TiebreakerQuestion,
    question_adapter,
)
from compass_engine.sources import fetch_table, rejected_rows, row_numbers

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("id", "phase", "type", "axis_code", "agree_dir", "text")

AXIS_ALIASES = {
    "econ": Axis.ECONOMIC,
    "economic": Axis.ECONOMIC,
    "auth": Axis.AUTHORITY,
    "authority": Axis.AUTHORITY,
    "gov": Axis.AUTHORITY,
    "cult": Axis.CULTURAL,
    "cultural": Axis.CULTURAL,
    "soc": Axis.CULTURAL,
}

KIND_ALIASES = {
    "core": "core",
    "tiebreaker": "tiebreaker",
    "refine": "refinement",
    "refinement": "refinement",
}

TRUTHY = {"yes", "y", "true", "1"}


def parse_macro_code(value: str) -> MacroCode:
    """Accepts both "EL-GA" and the compact "ELGA" spelling."""
    cleaned = value.strip().upper()
    if len(cleaned) == 4 and "-" not in cleaned:
        cleaned = f"{cleaned[:2]}-{cleaned[2:]}"
    return MacroCode(cleaned)


def _cell(row: Dict[str, Any], column: str) -> str:
    value = row.get(column, "")
    return "" if value is None else str(value).strip()


def _row_to_question_data(row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Converts one raw catalog row into the input for the Question union.

    Raises:
        ValueError: With a human readable reason when the row is unusable.
    """
    raw_id = _cell(row, "id")
    raw_phase = _cell(row, "phase")
    if not raw_id:
        raise ValueError("missing id")
    if not raw_phase:
        raise ValueError("missing phase")
    try:
        question_id = int(raw_id)
    except ValueError:
        raise ValueError(f"non-integer id '{raw_id}'")
    try:
        phase = int(raw_phase)
    except ValueError:
        raise ValueError(f"non-integer phase '{raw_phase}'")
    if phase not in (1, 2):
        raise ValueError(f"unsupported phase {phase}")

    raw_dir = _cell(row, "agree_dir")
    try:
        direction = int(raw_dir)
    except ValueError:
        raise ValueError(f"invalid agree_dir '{raw_dir}'")
    if direction not in (-1, 1):
        raise ValueError(f"agree_dir must be 1 or -1, got {direction}")

    raw_kind = _cell(row, "type").lower() or "core"
    kind = KIND_ALIASES.get(raw_kind)
    if kind is None:
        raise ValueError(f"unknown question type '{raw_kind}'")
    # Phase 2 rows are always refinement questions, whatever the type column says
    if phase == 2:
        if kind == "tiebreaker":
            raise ValueError("tiebreaker questions must be phase 1")
        kind = "refinement"
    elif kind == "refinement":
        raise ValueError("refinement questions must be phase 2")

    data: Dict[str, Any] = {
        "kind": kind,
        "id": question_id,
        "source_id": _cell(row, "id_code"),
        "text": _cell(row, "text"),
        "direction": direction,
        "description": _cell(row, "description") or None,
        "topic": _cell(row, "topic") or None,
        "axis_label": _cell(row, "axis_label") or None,
    }

    axis_code = _cell(row, "axis_code")
    macro_cell = _cell(row, "macro_cell")

    if kind == "refinement":
        if not axis_code:
            raise ValueError("missing supplementary axis code")
        try:
            data["category_code"] = parse_macro_code(macro_cell)
        except ValueError:
            raise ValueError(f"invalid macro cell '{macro_cell}' for phase 2 question")
        data["axis"] = axis_code
        return data

    axis = AXIS_ALIASES.get(axis_code.lower())
    if axis is None:
        raise ValueError(f"unknown axis code '{axis_code}'")
    data["axis"] = axis

    if kind == "tiebreaker":
        try:
            data["boundary"] = Boundary(macro_cell.upper())
        except ValueError:
            raise ValueError(f"invalid boundary tag '{macro_cell}'")
        if data["boundary"].axis != axis:
            raise ValueError(f"boundary {macro_cell} does not belong to axis {axis.value}")
    else:
        priority = _cell(row, "removal_priority").lower()
        data["removal_priority"] = priority if priority in ("first", "second") else None
        data["short_quiz"] = _cell(row, "short_quiz").lower() in TRUTHY

    return data


class QuestionCatalog:
    """
    Immutable, id-indexed view over every question in a catalog source.

    Built once per source and shared between sessions.
    """

    def __init__(
        self,
        questions: Iterable[Question],
        skipped_rows: Optional[Sequence[RowSkipped]] = None,
        source: str = "<memory>",
    ):
        self.source = source
        self.skipped_rows: Tuple[RowSkipped, ...] = tuple(skipped_rows or ())
        by_id: Dict[int, Question] = {}
        for q in questions:
            if q.id in by_id:
                logger.warning(f"Duplicate question id {q.id} in {source}; keeping the first occurrence")
                continue
            by_id[q.id] = q
        self._questions: Tuple[Question, ...] = tuple(sorted(by_id.values(), key=lambda q: q.id))
        self.by_id: Dict[int, Question] = {q.id: q for q in self._questions}

    @classmethod
    def from_frame(cls, frame: pd.DataFrame, source: str = "<frame>") -> "QuestionCatalog":
        """
        Parses a catalog table.

        Args:
            frame: String-typed DataFrame with at least the required columns.
            source: Name used in log lines and skip records.

        Raises:
            CatalogParseError: If the table is empty, lacks required columns,
                or yields no usable questions.
        """
        if frame is None or frame.empty:
            raise CatalogParseError(f"Question catalog is empty: {source}")

        missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
        if missing:
            raise CatalogParseError(f"Question catalog {source} is missing columns: {', '.join(missing)}")

        questions: List[Question] = []
        skipped: List[RowSkipped] = rejected_rows(frame, source)
        for rejected in skipped:
            logger.warning(f"Skipping catalog row {rejected.row_number} in {source}: {rejected.reason}")
        for row_number, row in zip(row_numbers(frame), frame.to_dict(orient="records")):
            try:
                data = _row_to_question_data(row)
                questions.append(question_adapter.validate_python(data))
            except ValidationError as e:
                reason = "; ".join(err["msg"] for err in e.errors())
                skipped.append(RowSkipped(source, row_number, reason, row, _cell(row, "id") or None))
                logger.warning(f"Skipping catalog row {row_number} in {source}: {reason}")
            except ValueError as e:
                skipped.append(RowSkipped(source, row_number, str(e), row, _cell(row, "id") or None))
                logger.warning(f"Skipping catalog row {row_number} in {source}: {e}")

        if not questions:
            raise CatalogParseError(f"Question catalog {source} contains no valid questions")

        skipped.sort(key=lambda s: s.row_number)
        logger.info(f"Loaded {len(questions)} questions from {source} ({len(skipped)} rows skipped)")
        return cls(questions, skipped, source)

    def __len__(self) -> int:
        return len(self._questions)

    def __iter__(self) -> Iterator[Question]:
        return iter(self._questions)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self.by_id

    def get(self, question_id: int) -> Optional[Question]:
        return self.by_id.get(question_id)

    def core_phase1_questions(self) -> List[Question]:
        """Phase 1 core questions, sorted by id."""
        return [q for q in self._questions if q.kind == "core"]

    def short_quiz_questions(self) -> List[Question]:
        return [q for q in self._questions if q.kind == "core" and q.short_quiz]

    def tiebreakers_for(self, boundaries: Iterable[Boundary]) -> List[TiebreakerQuestion]:
        """Tiebreakers tagged with any of ``boundaries``, in catalog order."""
        wanted = set(boundaries)
        return [q for q in self._questions if q.kind == "tiebreaker" and q.boundary in wanted]

    def tiebreakers_by_boundary(self, boundaries: Iterable[Boundary]) -> Dict[Boundary, List[TiebreakerQuestion]]:
        grouped: Dict[Boundary, List[TiebreakerQuestion]] = {b: [] for b in boundaries}
        for q in self.tiebreakers_for(grouped.keys()):
            grouped[q.boundary].append(q)
        return grouped

    def phase2_questions_for(self, category_code: MacroCode) -> List[RefinementQuestion]:
        code = MacroCode(category_code)
        return [q for q in self._questions if q.kind == "refinement" and q.category_code == code]

    def phase2_questions_by_axis(self, category_code: MacroCode) -> Dict[str, List[RefinementQuestion]]:
        """Phase 2 questions for a macro cell grouped by supplementary axis code."""
        grouped: Dict[str, List[RefinementQuestion]] = {}
        for q in self.phase2_questions_for(category_code):
            grouped.setdefault(q.axis, []).append(q)
        return grouped

    def supplementary_axes_for(self, category_code: MacroCode) -> List[str]:
        """Supplementary axis codes that have phase 2 questions for a macro cell, sorted."""
        return sorted(self.phase2_questions_by_axis(category_code))


async def _load_catalog(location: str) -> QuestionCatalog:
    try:
        frame = await fetch_table(location)
    except SourceUnavailableError as e:
        logger.error(f"Question catalog unavailable: {e}")
        raise CatalogParseError(f"Could not load question catalog from {location}: {e}") from e
    return QuestionCatalog.from_frame(frame, source=location)


async def load_catalog(source: Optional[str] = None) -> QuestionCatalog:
    """
    Loads (once per source) and returns the question catalog.

    Concurrent first calls share a single fetch.
    """
    location = source or settings.questions_source
    return await resource_cache.get(f"catalog:{location}", lambda: _load_catalog(location))
