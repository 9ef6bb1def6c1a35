import pytest

from compass_engine.classifier import MACRO_LABELS, classify, macro_label
from compass_engine.models import MacroCode


@pytest.mark.parametrize("economic, authority, expected", [
    (0, 0, MacroCode.EM_GM),
    (-80, 80, MacroCode.EL_GA),
    (80, 80, MacroCode.ER_GA),
    (-80, -80, MacroCode.EL_GL),
    (80, -80, MacroCode.ER_GL),
    (0, 50, MacroCode.EM_GA),
    (0, -50, MacroCode.EM_GL),
    (-50, 0, MacroCode.EL_GM),
    (50, 0, MacroCode.ER_GM),
])
def test_grid_cells(economic, authority, expected):
    assert classify(economic, authority) == expected


@pytest.mark.parametrize("economic, expected_band", [
    (33.0, "EM"),
    (33.01, "ER"),
    (-33.0, "EM"),
    (-33.01, "EL"),
])
def test_economic_boundary_is_exclusive(economic, expected_band):
    assert classify(economic, 0).economic_band == expected_band


@pytest.mark.parametrize("authority, expected_band", [
    (33.0, "GM"),
    (33.01, "GA"),
    (-33.0, "GM"),
    (-33.01, "GL"),
])
def test_authority_boundary_is_exclusive(authority, expected_band):
    assert classify(0, authority).authority_band == expected_band


def test_extremes_are_total():
    for e in (-100, 100):
        for a in (-100, 100):
            assert classify(e, a) in MacroCode


def test_custom_boundary():
    assert classify(20, 0, boundary=10) == MacroCode.ER_GM


def test_every_code_has_a_label():
    assert set(MACRO_LABELS) == set(MacroCode)
    assert macro_label("EM-GM") == "Mixed-Economy Liberal Center"
