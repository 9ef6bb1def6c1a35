import asyncio
import functools
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd
from pydantic import ValidationError

from compass_engine.cache import resource_cache
from compass_engine.catalog import parse_macro_code
from compass_engine.classifier import MACRO_LABELS, classify
from compass_engine.config import settings
from compass_engine.errors import ReferenceDataError, RowSkipped, SourceUnavailableError
from compass_engine.models import GridCell, MacroCode, SupplementaryAxis
from compass_engine.sources import fetch_table, rejected_rows, row_numbers

logger = logging.getLogger(__name__)

GRID_COLUMNS = ("macro_cell_code", "macro_cell_label", "ideology")
AXES_COLUMNS = ("macro_cell", "code", "axis")

_NUMBER = r"(-?\d+(?:\.\d+)?)"
COORDINATE_PATTERN = re.compile(
    rf"x:\s*{_NUMBER}\s*to\s*{_NUMBER}\s*,\s*y:\s*{_NUMBER}\s*to\s*{_NUMBER}", re.IGNORECASE
)

# Grid coordinates run -10..10; scores run -100..100
COORDINATE_SCALE = 10.0


def _text(row: Dict[str, object], column: str) -> str:
    return str(row.get(column, "")).strip()


def parse_coordinate_range(text: str) -> Optional[Tuple[float, float, float, float]]:
    """Parses "x: -10.00 to -7.78, y: 7.78 to 10.00" into (x_min, x_max, y_min, y_max)."""
    match = COORDINATE_PATTERN.search(text or "")
    if not match:
        return None
    x1, x2, y1, y2 = (float(g) for g in match.groups())
    return min(x1, x2), max(x1, x2), min(y1, y2), max(y1, y2)


def _cells_from_frame(frame: pd.DataFrame, source: str) -> Tuple[List[GridCell], List[RowSkipped]]:
    if frame is None or frame.empty:
        raise ReferenceDataError(f"Grid table is empty: {source}")
    missing = [c for c in GRID_COLUMNS if c not in frame.columns]
    if missing:
        raise ReferenceDataError(f"Grid table {source} is missing columns: {', '.join(missing)}")

    cells: List[GridCell] = []
    skipped: List[RowSkipped] = rejected_rows(frame, source)
    for rejected in skipped:
        logger.warning(f"Skipping grid row {rejected.row_number} in {source}: {rejected.reason}")
    for row_number, row in zip(row_numbers(frame), frame.to_dict(orient="records")):
        get = functools.partial(_text, row)
        try:
            cells.append(GridCell(
                macro_code=parse_macro_code(get("macro_cell_code")),
                macro_label=get("macro_cell_label"),
                coordinate_range=get("coordinate_range"),
                category=get("ideology"),
                friendly_label=get("friendly_label"),
                description=get("explanation"),
                examples=get("examples"),
                align_with=tuple(v for v in (get("align_ideology_1"), get("align_ideology_2")) if v),
                surprising_alignment=tuple(v for v in (get("surprise_ideology_1"), get("surprise_ideology_2")) if v),
            ))
        except ValueError as e:
            reason = str(e).splitlines()[0]
            skipped.append(RowSkipped(source, row_number, reason, row, get("ideology") or None))
            logger.warning(f"Skipping grid row {row_number} in {source}: {reason}")
    skipped.sort(key=lambda s: s.row_number)
    return cells, skipped


def _axes_from_frame(frame: pd.DataFrame, source: str) -> Tuple[List[SupplementaryAxis], List[RowSkipped]]:
    missing = [c for c in AXES_COLUMNS if c not in frame.columns]
    if missing:
        raise ReferenceDataError(f"Supplementary axes table {source} is missing columns: {', '.join(missing)}")

    axes: List[SupplementaryAxis] = []
    skipped: List[RowSkipped] = rejected_rows(frame, source)
    for rejected in skipped:
        logger.warning(f"Skipping supplementary axis row {rejected.row_number} in {source}: {rejected.reason}")
    for row_number, row in zip(row_numbers(frame), frame.to_dict(orient="records")):
        try:
            axes.append(SupplementaryAxis(
                macro_code=parse_macro_code(str(row["macro_cell"])),
                code=str(row["code"]).strip(),
                name=str(row["axis"]).strip(),
                negative_anchor=str(row.get("negative_anchor", "")).strip(),
                positive_anchor=str(row.get("positive_anchor", "")).strip(),
            ))
        except (ValueError, ValidationError) as e:
            reason = str(e).splitlines()[0]
            skipped.append(RowSkipped(source, row_number, reason, row, str(row.get("code", "")) or None))
            logger.warning(f"Skipping supplementary axis row {row_number} in {source}: {reason}")
    skipped.sort(key=lambda s: s.row_number)
    return axes, skipped


class CategoryGrid:
    """
    Descriptive grid data: nine coarse cells, up to 81 fine cells and the
    supplementary axis metadata for each macro cell.
    """

    def __init__(
        self,
        coarse: Iterable[GridCell],
        fine: Iterable[GridCell] = (),
        axes: Iterable[SupplementaryAxis] = (),
        skipped_rows: Iterable[RowSkipped] = (),
    ):
        self.coarse: Dict[MacroCode, GridCell] = {}
        for cell in coarse:
            self.coarse.setdefault(cell.macro_code, cell)
        self.fine: Tuple[GridCell, ...] = tuple(fine)
        self._fine_by_name: Dict[str, GridCell] = {}
        for cell in self.fine:
            self._fine_by_name.setdefault(cell.category.lower(), cell)
        self._axes: Dict[MacroCode, List[SupplementaryAxis]] = {}
        for axis in axes:
            self._axes.setdefault(axis.macro_code, []).append(axis)
        self.skipped_rows: Tuple[RowSkipped, ...] = tuple(skipped_rows)

    @classmethod
    def from_frames(
        cls,
        coarse: pd.DataFrame,
        fine: Optional[pd.DataFrame] = None,
        axes: Optional[pd.DataFrame] = None,
        source: str = "<frame>",
    ) -> "CategoryGrid":
        coarse_cells, skipped = _cells_from_frame(coarse, f"{source}:coarse")
        fine_cells: List[GridCell] = []
        axis_rows: List[SupplementaryAxis] = []
        if fine is not None:
            fine_cells, fine_skipped = _cells_from_frame(fine, f"{source}:fine")
            skipped.extend(fine_skipped)
        if axes is not None and not axes.empty:
            axis_rows, axes_skipped = _axes_from_frame(axes, f"{source}:axes")
            skipped.extend(axes_skipped)
        return cls(coarse_cells, fine_cells, axis_rows, skipped)

    def coarse_cell(self, macro_code: MacroCode) -> Optional[GridCell]:
        return self.coarse.get(MacroCode(macro_code))

    def macro_label(self, macro_code: MacroCode) -> str:
        """Coarse cell label, falling back to the built-in macro label table."""
        cell = self.coarse_cell(macro_code)
        if cell is not None and cell.macro_label:
            return cell.macro_label
        return MACRO_LABELS[MacroCode(macro_code)]

    def fine_cell(self, category: str) -> Optional[GridCell]:
        return self._fine_by_name.get(category.strip().lower())

    def fine_cells_for(self, macro_code: MacroCode) -> List[GridCell]:
        code = MacroCode(macro_code)
        return [cell for cell in self.fine if cell.macro_code == code]

    def supplementary_axes_for(self, macro_code: MacroCode) -> List[SupplementaryAxis]:
        return list(self._axes.get(MacroCode(macro_code), ()))

    def describe(self, category: str, macro_code: MacroCode) -> Optional[GridCell]:
        """Fine cell for a category name, or the coarse cell of its macro code."""
        return self.fine_cell(category) or self.coarse_cell(macro_code)

    def locate(self, economic: float, authority: float) -> Optional[GridCell]:
        """
        Finds the fine cell whose coordinate range contains the position.

        Ranges share their edges, so cells of the position's own macro cell
        win. Falls back to the coarse cell when nothing matches.
        """
        macro_code = classify(economic, authority)
        x = economic / COORDINATE_SCALE
        y = authority / COORDINATE_SCALE
        matches = []
        for cell in self.fine:
            bounds = parse_coordinate_range(cell.coordinate_range)
            if bounds is None:
                continue
            x_min, x_max, y_min, y_max = bounds
            if x_min <= x <= x_max and y_min <= y <= y_max:
                matches.append(cell)
        for cell in matches:
            if cell.macro_code == macro_code:
                return cell
        if matches:
            return matches[0]
        logger.debug(f"No fine grid cell contains ({x:.2f}, {y:.2f}); using coarse cell {macro_code.value}")
        return self.coarse_cell(macro_code)


async def _fetch_required(location: str, what: str) -> pd.DataFrame:
    try:
        return await fetch_table(location)
    except SourceUnavailableError as e:
        logger.error(f"{what} unavailable: {e}")
        raise ReferenceDataError(f"Could not load {what} from {location}: {e}") from e


async def _fetch_optional(location: str, what: str) -> Optional[pd.DataFrame]:
    try:
        return await fetch_table(location)
    except SourceUnavailableError as e:
        logger.warning(f"{what} unavailable, continuing without it: {e}")
        return None


async def _load_grid(coarse: str, fine: str, axes: str) -> CategoryGrid:
    coarse_frame, fine_frame, axes_frame = await asyncio.gather(
        _fetch_required(coarse, "coarse grid"),
        _fetch_optional(fine, "fine grid"),
        _fetch_optional(axes, "supplementary axes"),
    )
    grid = CategoryGrid.from_frames(coarse_frame, fine_frame, axes_frame, source=coarse)
    logger.info(f"Loaded grid: {len(grid.coarse)} coarse cells, {len(grid.fine)} fine cells")
    return grid


async def load_grid(
    coarse_source: Optional[str] = None,
    fine_source: Optional[str] = None,
    axes_source: Optional[str] = None,
) -> CategoryGrid:
    coarse = coarse_source or settings.coarse_grid_source
    fine = fine_source or settings.fine_grid_source
    axes = axes_source or settings.supplementary_axes_source
    key = f"grid:{coarse}|{fine}|{axes}"
    return await resource_cache.get(key, lambda: _load_grid(coarse, fine, axes))
