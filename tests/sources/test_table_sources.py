from unittest.mock import AsyncMock, MagicMock

import httpx
import pandas as pd
import pytest

from compass_engine.errors import SourceUnavailableError
from compass_engine.sources import fetch_table, is_remote, parse_tsv, rejected_rows, row_numbers

TABLE = 'id\tphase\ttext\n1\t1\tSay "hello" to the state\n2\t1\t\n'


def test_parse_tsv_keeps_quotes_and_empty_cells():
    frame = parse_tsv(TABLE)
    assert list(frame.columns) == ["id", "phase", "text"]
    assert frame.loc[0, "text"] == 'Say "hello" to the state'
    assert frame.loc[1, "text"] == ""
    assert frame.loc[0, "id"] == "1"


def test_parse_tsv_pads_short_rows():
    frame = parse_tsv("a\tb\tc\nx\n")
    assert frame.loc[0].tolist() == ["x", "", ""]


def test_parse_tsv_sets_aside_rows_wider_than_header():
    frame = parse_tsv("id\ttext\n1\tfirst\n\n2\tstray\ttab\n3\tthird\t\t\n")
    assert frame["id"].tolist() == ["1", "3"]
    assert frame.loc[1, "text"] == "third"
    assert row_numbers(frame) == [2, 5]

    skipped = rejected_rows(frame, "table.tsv")
    assert len(skipped) == 1
    assert skipped[0].row_number == 4
    assert skipped[0].identifier == "2"
    assert skipped[0].reason == "expected at most 2 fields, got 3"


def test_row_numbers_default_to_position():
    frame = pd.DataFrame({"id": ["1", "2"]})
    assert row_numbers(frame) == [2, 3]
    assert rejected_rows(frame, "memory") == []


@pytest.mark.parametrize("location, expected", [
    ("https://example.org/sheet.tsv", True),
    ("http://example.org/sheet.tsv", True),
    ("/data/sheet.tsv", False),
    ("sheet.tsv", False),
])
def test_is_remote(location, expected):
    assert is_remote(location) is expected


@pytest.mark.asyncio
async def test_fetch_local_table(tmp_path):
    path = tmp_path / "table.tsv"
    path.write_text(" id \tphase\ttext\n1\t1\thello\n", encoding="utf-8")
    frame = await fetch_table(str(path))
    assert list(frame.columns) == ["id", "phase", "text"]
    assert len(frame) == 1


@pytest.mark.asyncio
async def test_missing_local_table(tmp_path):
    with pytest.raises(SourceUnavailableError, match="File not found"):
        await fetch_table(str(tmp_path / "missing.tsv"))


@pytest.mark.asyncio
async def test_empty_local_table(tmp_path):
    path = tmp_path / "blank.tsv"
    path.write_text("  \n", encoding="utf-8")
    with pytest.raises(SourceUnavailableError, match="empty"):
        await fetch_table(str(path))


@pytest.mark.asyncio
async def test_undecodable_local_table(tmp_path):
    path = tmp_path / "latin1.tsv"
    path.write_bytes(b"id\tphase\ttext\n1\t1\tna\xefve \xff\n")
    with pytest.raises(SourceUnavailableError, match="Could not decode"):
        await fetch_table(str(path))


@pytest.mark.asyncio
async def test_fetch_keeps_rejected_rows_after_header_cleanup(tmp_path):
    path = tmp_path / "table.tsv"
    path.write_text(" id \ttext\n1\tok\n2\ttoo\tmany\n", encoding="utf-8")
    frame = await fetch_table(str(path))
    assert list(frame.columns) == ["id", "text"]
    assert len(frame) == 1
    assert [s.row_number for s in rejected_rows(frame, str(path))] == [3]


def mock_client(mocker, response=None, error=None):
    """Patches httpx.AsyncClient so that ``get`` returns ``response`` or raises ``error``."""
    client = MagicMock(spec=httpx.AsyncClient)
    client.get = AsyncMock(return_value=response, side_effect=error)
    client.__aenter__.return_value = client
    client.__aexit__.return_value = None
    return mocker.patch("httpx.AsyncClient", return_value=client), client


@pytest.mark.asyncio
async def test_fetch_remote_table(mocker):
    url = "https://example.org/questions.tsv"
    response = httpx.Response(200, text=TABLE, request=httpx.Request("GET", url))
    client_cls, client = mock_client(mocker, response=response)

    frame = await fetch_table(url, timeout=3.0)

    client_cls.assert_called_once_with(timeout=3.0)
    client.get.assert_awaited_once_with(url)
    assert len(frame) == 2


@pytest.mark.asyncio
async def test_remote_http_error(mocker):
    url = "https://example.org/gone.tsv"
    response = httpx.Response(404, text="not found", request=httpx.Request("GET", url))
    mock_client(mocker, response=response)

    with pytest.raises(SourceUnavailableError, match="HTTP 404"):
        await fetch_table(url)


@pytest.mark.asyncio
async def test_remote_connection_error(mocker):
    url = "https://example.org/questions.tsv"
    mock_client(mocker, error=httpx.ConnectError("refused", request=httpx.Request("GET", url)))

    with pytest.raises(SourceUnavailableError, match="Could not reach"):
        await fetch_table(url)
