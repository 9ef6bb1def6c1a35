import random
from pathlib import Path
from typing import List

import pytest

from compass_engine.cache import resource_cache
from compass_engine.catalog import QuestionCatalog
from compass_engine.config import ASSETS_DIR
from compass_engine.grid import CategoryGrid
from compass_engine.models import Axis, Boundary, CoreQuestion, MacroCode, RefinementQuestion, TiebreakerQuestion
from compass_engine.sources import parse_tsv
from compass_engine.variants import load_questionnaires_from_file
from compass_engine.vectors import CategoryVectorStore


def read_asset(name: str):
    """Parses a bundled TSV asset without going through the async loaders."""
    return parse_tsv(Path(ASSETS_DIR, name).read_text(encoding="utf-8"))


# --- Question builders ---

def core(qid: int, axis: Axis, direction: int, **kwargs) -> CoreQuestion:
    return CoreQuestion(id=qid, source_id=f"P{qid:02d}", text=f"Core statement {qid}", axis=axis, direction=direction, **kwargs)


def tiebreaker(qid: int, boundary: Boundary, direction: int = 1) -> TiebreakerQuestion:
    return TiebreakerQuestion(
        id=qid, source_id=f"TB-{qid}", text=f"Tiebreaker {qid}", axis=boundary.axis, direction=direction, boundary=boundary
    )


def refinement(qid: int, axis_code: str, macro_code: MacroCode, direction: int = 1) -> RefinementQuestion:
    return RefinementQuestion(
        id=qid, source_id=f"{axis_code}-{qid}", text=f"Refinement {qid}", axis=axis_code, direction=direction, category_code=macro_code
    )


def balanced_pool(per_bucket: int = 6) -> List[CoreQuestion]:
    """per_bucket questions for each of the six (axis, direction) buckets, ids starting at 1."""
    questions = []
    qid = 1
    for axis in (Axis.ECONOMIC, Axis.AUTHORITY, Axis.CULTURAL):
        for direction in (-1, 1):
            for _ in range(per_bucket):
                questions.append(core(qid, axis, direction))
                qid += 1
    return questions


# --- Fixtures ---

@pytest.fixture(autouse=True)
def clear_resource_cache():
    """Every test starts with an empty reference data cache."""
    resource_cache.clear()
    yield
    resource_cache.clear()


@pytest.fixture(scope="module")
def bundled_catalog() -> QuestionCatalog:
    return QuestionCatalog.from_frame(read_asset("questions.tsv"), source="questions.tsv")


@pytest.fixture(scope="module")
def bundled_vectors() -> CategoryVectorStore:
    return CategoryVectorStore.from_frame(read_asset("category_vectors.tsv"), source="category_vectors.tsv")


@pytest.fixture(scope="module")
def bundled_grid() -> CategoryGrid:
    return CategoryGrid.from_frames(
        read_asset("grid_3x3.tsv"),
        read_asset("grid_9x9.tsv"),
        read_asset("supplementary_axes.tsv"),
        source="assets",
    )


@pytest.fixture(scope="module")
def questionnaires():
    return load_questionnaires_from_file()


@pytest.fixture
def long_variant(questionnaires):
    return questionnaires.get("long")


@pytest.fixture
def short_variant(questionnaires):
    return questionnaires.get("short")


@pytest.fixture
def rng():
    return random.Random(1234)
