from typing import Dict, Optional

from compass_engine.config import settings
from compass_engine.models import MacroCode

MACRO_LABELS: Dict[MacroCode, str] = {
    MacroCode.EL_GA: "Revolutionary Communism & State Socialism",
    MacroCode.EM_GA: "Authoritarian Statist Centralism",
    MacroCode.ER_GA: "Authoritarian Right & Corporatist Monarchism",
    MacroCode.EL_GM: "Democratic Socialism & Left Populism",
    MacroCode.EM_GM: "Mixed-Economy Liberal Center",
    MacroCode.ER_GM: "Conservative Capitalism & National Conservatism",
    MacroCode.EL_GL: "Libertarian Socialism & Anarcho-Communism",
    MacroCode.EM_GL: "Social-Market Libertarianism",
    MacroCode.ER_GL: "Anarcho-Capitalism & Ultra-Free-Market Libertarianism",
}


def economic_band(economic: float, boundary: float) -> str:
    if economic < -boundary:
        return "EL"
    if economic > boundary:
        return "ER"
    return "EM"


def authority_band(authority: float, boundary: float) -> str:
    # Positive authority is authoritarian
    if authority > boundary:
        return "GA"
    if authority < -boundary:
        return "GL"
    return "GM"


def classify(economic: float, authority: float, boundary: Optional[float] = None) -> MacroCode:
    """
    Maps an (economic, authority) pair onto one of the nine macro cells.

    Scores exactly on the boundary (+-33 by default) fall in the middle band.
    """
    boundary = settings.macro_boundary if boundary is None else boundary
    return MacroCode(f"{economic_band(economic, boundary)}-{authority_band(authority, boundary)}")


def macro_label(code: MacroCode) -> str:
    return MACRO_LABELS[MacroCode(code)]
