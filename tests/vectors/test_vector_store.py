import pandas as pd
import pytest

from compass_engine.errors import MissingVectorData, ReferenceDataError
from compass_engine.models import MacroCode
from compass_engine.sources import parse_tsv
from compass_engine.vectors import CategoryVectorStore, load_vectors

HEADER = "\t".join(
    ["ideology", "macro_cell"] + [f"{c}_{i}" for i in range(1, 7) for c in ("axis", "code", "score")]
)


def frame(*rows):
    return parse_tsv(HEADER + "\n" + "\n".join(rows) + "\n")


def test_bundled_store_has_nine_per_cell(bundled_vectors):
    assert len(bundled_vectors) == 81
    assert set(bundled_vectors.macro_codes) == set(MacroCode)
    for code in MacroCode:
        vectors = bundled_vectors.vectors_for(code)
        assert len(vectors) == 9
        assert all(len(v.axes) == 6 for v in vectors)
    assert bundled_vectors.skipped_rows == ()


def test_axis_codes_match_macro_cell(bundled_vectors):
    for code in MacroCode:
        for vector in bundled_vectors.vectors_for(code):
            assert all(a.axis_code.startswith(code.compact) for a in vector.axes)


def test_short_rows_keep_their_axes():
    store = CategoryVectorStore.from_frame(frame("Tiny\tEM-GM\tOnly Axis\tEMGM-A\t25"))
    (vector,) = store.vectors_for(MacroCode.EM_GM)
    assert vector.as_mapping() == {"EMGM-A": 25.0}


def test_compact_macro_code_accepted():
    store = CategoryVectorStore.from_frame(frame("Tiny\tERGL\tAxis\tERGL-A\t-10"))
    assert len(store.vectors_for(MacroCode.ER_GL)) == 1


@pytest.mark.parametrize("row, reason", [
    ("Too Narrow\tEM-GM\tAxis", "at least 5 columns"),
    ("Bad Cell\tXX-YY\tAxis\tEMGM-A\t10", "invalid macro cell"),
    ("Bad Score\tEM-GM\tAxis\tEMGM-A\tlots", "non-numeric score"),
    ("Out Of Range\tEM-GM\tAxis\tEMGM-A\t150", "validation error"),
    ("\tEM-GM\tAxis\tEMGM-A\t10", "missing category label"),
])
def test_malformed_rows_are_skipped(row, reason):
    store = CategoryVectorStore.from_frame(frame("Good\tEM-GM\tAxis\tEMGM-A\t10", row))
    assert len(store) == 1
    assert len(store.skipped_rows) == 1
    assert reason in store.skipped_rows[0].reason
    assert store.skipped_rows[0].row_number == 3


def test_row_wider_than_header_is_skipped():
    wide = "\t".join(["Too Wide", "EM-GM"] + ["Axis", "EMGM-A", "10"] * 6 + ["extra"])
    store = CategoryVectorStore.from_frame(frame("Good\tEM-GM\tAxis\tEMGM-A\t10", wide, "Also Good\tEM-GM\tAxis\tEMGM-B\t-5"))
    assert [v.label for v in store.vectors_for(MacroCode.EM_GM)] == ["Good", "Also Good"]
    assert len(store.skipped_rows) == 1
    assert store.skipped_rows[0].row_number == 3
    assert store.skipped_rows[0].identifier == "Too Wide"


def test_require_raises_for_empty_cell():
    store = CategoryVectorStore.from_frame(frame("Good\tEM-GM\tAxis\tEMGM-A\t10"))
    with pytest.raises(MissingVectorData) as excinfo:
        store.require(MacroCode.EL_GA)
    assert excinfo.value.macro_code == "EL-GA"


def test_empty_table_is_fatal():
    with pytest.raises(ReferenceDataError):
        CategoryVectorStore.from_frame(pd.DataFrame())


@pytest.mark.asyncio
async def test_load_vectors_caches_store():
    store = await load_vectors()
    assert len(store) == 81
    assert await load_vectors() is store


@pytest.mark.asyncio
async def test_load_vectors_missing_source(tmp_path):
    with pytest.raises(ReferenceDataError, match="Could not load category vectors"):
        await load_vectors(str(tmp_path / "absent.tsv"))
