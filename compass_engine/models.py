from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class Axis(str, Enum):
    """Primary (phase 1) axes."""
    ECONOMIC = "economic"
    AUTHORITY = "authority"
    CULTURAL = "cultural"


class Boundary(str, Enum):
    """Macro boundaries a provisional score can sit close to."""
    LEFT_CENTER = "LEFT_CENTER"
    CENTER_RIGHT = "CENTER_RIGHT"
    LIB_CENTER = "LIB_CENTER"
    CENTER_AUTH = "CENTER_AUTH"

    @property
    def axis(self) -> Axis:
        if self in (Boundary.LEFT_CENTER, Boundary.CENTER_RIGHT):
            return Axis.ECONOMIC
        return Axis.AUTHORITY


class MacroCode(str, Enum):
    """
    The nine coarse cells of the 3x3 grid.

    First half is the economic band (left/middle/right), second half the
    authority band (authoritarian/middle/libertarian).
    """
    EL_GA = "EL-GA"
    EM_GA = "EM-GA"
    ER_GA = "ER-GA"
    EL_GM = "EL-GM"
    EM_GM = "EM-GM"
    ER_GM = "ER-GM"
    EL_GL = "EL-GL"
    EM_GL = "EM-GL"
    ER_GL = "ER-GL"

    @property
    def economic_band(self) -> str:
        return self.value.split("-")[0]

    @property
    def authority_band(self) -> str:
        return self.value.split("-")[1]

    @property
    def compact(self) -> str:
        """Code without the dash, as used in supplementary axis codes (ELGA-A)."""
        return self.value.replace("-", "")


class RemovalPriority(str, Enum):
    FIRST = "first"
    SECOND = "second"


# --- Questions ---

class _QuestionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    source_id: str = ""
    text: str = Field(min_length=1)
    direction: Literal[-1, 1]
    description: Optional[str] = None
    topic: Optional[str] = None
    axis_label: Optional[str] = None


class CoreQuestion(_QuestionBase):
    kind: Literal["core"] = "core"
    phase: Literal[1] = 1
    axis: Axis
    removal_priority: Optional[RemovalPriority] = None
    short_quiz: bool = False

    @property
    def axis_key(self) -> str:
        return self.axis.value


class TiebreakerQuestion(_QuestionBase):
    kind: Literal["tiebreaker"] = "tiebreaker"
    phase: Literal[1] = 1
    axis: Axis
    boundary: Boundary

    @property
    def axis_key(self) -> str:
        return self.axis.value


class RefinementQuestion(_QuestionBase):
    kind: Literal["refinement"] = "refinement"
    phase: Literal[2] = 2
    axis: str = Field(min_length=1)  # supplementary axis code, e.g. "ELGA-A"
    category_code: MacroCode

    @property
    def axis_key(self) -> str:
        return self.axis


Question = Annotated[
    Union[CoreQuestion, TiebreakerQuestion, RefinementQuestion],
    Field(discriminator="kind"),
]

question_adapter = TypeAdapter(Question)


# --- Reference data ---

class AxisReference(BaseModel):
    model_config = ConfigDict(frozen=True)

    axis_name: str
    axis_code: str
    score: float = Field(ge=-100, le=100)


class CategoryVector(BaseModel):
    """Reference point for one fine category inside a macro cell."""
    model_config = ConfigDict(frozen=True)

    label: str
    macro_code: MacroCode
    axes: Tuple[AxisReference, ...] = Field(max_length=6)

    def as_mapping(self) -> Dict[str, float]:
        return {a.axis_code: a.score for a in self.axes}


class GridCell(BaseModel):
    model_config = ConfigDict(frozen=True)

    macro_code: MacroCode
    macro_label: str
    coordinate_range: str = ""
    category: str
    friendly_label: str = ""
    description: str = ""
    examples: str = ""
    align_with: Tuple[str, ...] = ()
    surprising_alignment: Tuple[str, ...] = ()


class SupplementaryAxis(BaseModel):
    model_config = ConfigDict(frozen=True)

    macro_code: MacroCode
    code: str
    name: str
    negative_anchor: str = ""
    positive_anchor: str = ""


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    macro_code: MacroCode
    distance: Optional[float] = None
    fallback: bool = False


class ClassificationResult(BaseModel):
    """Everything the engine resolves for a finished session."""
    economic: float
    authority: float
    cultural: float
    macro_code: MacroCode
    macro_label: str
    category: str
    friendly_label: str = ""
    description: str = ""
    supplementary_scores: Dict[str, float] = Field(default_factory=dict)
    supplementary_axes: List[SupplementaryAxis] = Field(default_factory=list)
    align_with: List[str] = Field(default_factory=list)
    surprising_alignment: List[str] = Field(default_factory=list)
    fallback: bool = False
