import base64
import json
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from compass_engine.models import Boundary, MacroCode


class AnswerRecord(BaseModel):
    question_id: int
    source_id: str = ""
    axis: str
    phase: int
    value: Optional[float] = Field(default=None, ge=0, le=1)
    skipped: bool = False


class AxisSkipStats(BaseModel):
    skipped: int
    scheduled: int
    ratio: float


class SubmissionPayload(BaseModel):
    """What the engine hands to a result store once a session is complete."""
    session_id: str
    variant: str
    scores: Dict[str, float]  # economic, authority, cultural
    macro_code: MacroCode
    macro_label: str
    category: str
    friendly_label: str = ""
    description: str = ""
    supplementary_scores: Dict[str, float] = Field(default_factory=dict)
    answers: List[AnswerRecord] = Field(default_factory=list)
    skip_stats: Dict[str, AxisSkipStats] = Field(default_factory=dict)
    tiebreaker_boundaries: List[Boundary] = Field(default_factory=list)
    created_at: datetime
    submitted_at: datetime


class ResultPayload(SubmissionPayload):
    """A stored submission, re-rendered without recomputing anything."""
    result_id: str

    @classmethod
    def from_submission(cls, result_id: str, submission: SubmissionPayload) -> "ResultPayload":
        return cls(result_id=result_id, **submission.model_dump())

    def headline(self) -> str:
        label = self.friendly_label or self.category
        return f"{label} ({self.macro_label})"


class ShareToken(BaseModel):
    """Compact, URL-safe summary of a result for share links."""
    economic: float
    authority: float
    cultural: float
    macro_code: MacroCode
    category: str
    variant: str

    def encode(self) -> str:
        compact = {
            "s": [round(self.economic, 2), round(self.authority, 2), round(self.cultural, 2)],
            "m": self.macro_code.value,
            "c": self.category,
            "t": self.variant,
        }
        raw = json.dumps(compact, separators=(",", ":")).encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    @classmethod
    def decode(cls, token: str) -> "ShareToken":
        """
        Raises:
            ValueError: If the token is not a valid share token.
        """
        padded = token + "=" * (-len(token) % 4)
        try:
            compact = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
            economic, authority, cultural = compact["s"]
            return cls(
                economic=economic,
                authority=authority,
                cultural=cultural,
                macro_code=compact["m"],
                category=compact["c"],
                variant=compact["t"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid share token: {e}") from e

    @classmethod
    def from_result(cls, result: SubmissionPayload) -> "ShareToken":
        return cls(
            economic=result.scores.get("economic", 0.0),
            authority=result.scores.get("authority", 0.0),
            cultural=result.scores.get("cultural", 0.0),
            macro_code=result.macro_code,
            category=result.category,
            variant=result.variant,
        )
