import asyncio
import csv
import io
import logging
from pathlib import Path
from typing import List, Optional

import httpx
import pandas as pd

from compass_engine.config import settings
from compass_engine.errors import RowSkipped, SourceUnavailableError

logger = logging.getLogger(__name__)

# DataFrame.attrs keys set by parse_tsv
LINE_NUMBERS = "line_numbers"
REJECTED_LINES = "rejected_lines"


def is_remote(location: str) -> bool:
    return location.startswith("http://") or location.startswith("https://")


def parse_tsv(text: str) -> pd.DataFrame:
    """
    Parses TSV text into a string-typed DataFrame.

    Quoting is disabled because question text routinely contains quote
    characters. Empty cells become empty strings rather than NaN.

    A row with more non-empty fields than the header (usually a stray tab
    inside a text cell) is left out of the frame and kept, with its line
    number, under ``frame.attrs["rejected_lines"]`` so the caller can record
    it as skipped. ``frame.attrs["line_numbers"]`` holds the source line of
    every row that was kept.
    """
    numbered = [(number, line.rstrip("\r")) for number, line in enumerate(text.split("\n"), start=1)]
    numbered = [(number, line) for number, line in numbered if line]
    if not numbered:
        raise pd.errors.EmptyDataError("No columns to parse from text")

    (_, header), rows = numbered[0], numbered[1:]
    width = len(header.split("\t"))
    kept = [header]
    line_numbers: List[int] = []
    rejected = []
    for number, line in rows:
        fields = line.split("\t")
        if any(f.strip() for f in fields[width:]):
            rejected.append((number, fields))
            continue
        kept.append("\t".join(fields[:width]))
        line_numbers.append(number)

    frame = pd.read_csv(
        io.StringIO("\n".join(kept) + "\n"),
        sep="\t",
        dtype=str,
        keep_default_na=False,
        quoting=csv.QUOTE_NONE,
        skip_blank_lines=True,
        index_col=False,
    )
    # Short rows are padded with NaN even with keep_default_na off
    frame = frame.fillna("")
    frame.attrs[LINE_NUMBERS] = line_numbers
    frame.attrs[REJECTED_LINES] = rejected
    return frame


def row_numbers(frame: pd.DataFrame) -> List[int]:
    """Source line number of each row; the header is line 1."""
    numbers = frame.attrs.get(LINE_NUMBERS)
    if numbers is None or len(numbers) != len(frame):
        return [position + 2 for position in range(len(frame))]
    return list(numbers)


def rejected_rows(frame: pd.DataFrame, source: str) -> List[RowSkipped]:
    """Skip records for the rows ``parse_tsv`` left out of ``frame``."""
    header = [str(c) for c in frame.columns]
    return [
        RowSkipped(
            source,
            number,
            f"expected at most {len(header)} fields, got {len(fields)}",
            dict(zip(header, fields)),
            fields[0].strip() or None,
        )
        for number, fields in frame.attrs.get(REJECTED_LINES, ())
    ]


async def _fetch_remote(url: str, timeout: Optional[float]) -> str:
    logger.info(f"Fetching remote table: {url}")
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.text
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP error fetching {url}: {e.response.status_code}")
        raise SourceUnavailableError(f"HTTP {e.response.status_code} fetching {url}") from e
    except httpx.RequestError as e:
        logger.error(f"Request error fetching {url}: {e}")
        raise SourceUnavailableError(f"Could not reach {url}: {e}") from e


def _read_local(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise SourceUnavailableError(f"File not found: {path}") from e
    except UnicodeDecodeError as e:
        raise SourceUnavailableError(f"Could not decode {path}: {e}") from e
    except OSError as e:
        raise SourceUnavailableError(f"Could not read {path}: {e}") from e


async def fetch_table(location: str, timeout: Optional[float] = None) -> pd.DataFrame:
    """
    Fetches a TSV table from a local path or an http(s) URL.

    Rows wider than the header are not fatal; see ``rejected_rows``.

    Args:
        location: File path or URL of the table.
        timeout: HTTP timeout in seconds; defaults to the configured value.

    Returns:
        A DataFrame with every column typed as str.

    Raises:
        SourceUnavailableError: If the source cannot be read or parsed.
    """
    if is_remote(location):
        text = await _fetch_remote(location, timeout if timeout is not None else settings.http_timeout)
    else:
        text = await asyncio.to_thread(_read_local, location)

    if not text.strip():
        raise SourceUnavailableError(f"Table source is empty: {location}")

    try:
        frame = parse_tsv(text)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise SourceUnavailableError(f"Could not parse table {location}: {e}") from e

    # Header cells occasionally carry stray whitespace
    frame.columns = [str(c).strip() for c in frame.columns]
    logger.debug(f"Loaded {len(frame)} rows from {location}")
    return frame
