import logging
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from compass_engine.config import settings
from compass_engine.errors import VariantConfigError
from compass_engine.sampler import BUCKETS

logger = logging.getLogger(__name__)


class PhaseTwoConfig(BaseModel):
    questions_per_axis: int = Field(ge=1)


class QuestionnaireVariant(BaseModel):
    id: str
    name: str
    description: str = ""
    question_pool: Literal["core", "short_quiz"] = "core"
    screen_size: int = Field(default=5, ge=1)
    screens: List[List[str]]
    checkpoint: Optional[int] = None  # responded phase 1 count that triggers boundary detection
    boundary_band: Optional[float] = Field(default=None, gt=0)
    max_tiebreakers: int = Field(default=6, ge=0)
    phase_two: Optional[PhaseTwoConfig] = None
    grid: Literal["coarse", "fine"] = "fine"

    @property
    def scheduled_count(self) -> int:
        return sum(len(s) for s in self.screens)

    @property
    def has_phase_two(self) -> bool:
        return self.phase_two is not None

    @property
    def band(self) -> float:
        return self.boundary_band if self.boundary_band is not None else settings.default_boundary_band


class QuestionnaireConfig(BaseModel):
    version: str
    questionnaires: List[QuestionnaireVariant]

    def get(self, variant_id: str) -> QuestionnaireVariant:
        for variant in self.questionnaires:
            if variant.id == variant_id:
                return variant
        raise VariantConfigError(f"Unknown questionnaire variant: {variant_id}")


def load_questionnaire_data(data: Dict[str, Any]) -> QuestionnaireConfig:
    """
    Validates raw questionnaire data against the QuestionnaireConfig model
    and performs additional custom validations.
    """
    try:
        config = QuestionnaireConfig.model_validate(data)
    except ValidationError as e:
        raise e

    seen_ids = set()
    for variant in config.questionnaires:
        if variant.id in seen_ids:
            raise VariantConfigError(f"Duplicate questionnaire ID found: {variant.id}")
        seen_ids.add(variant.id)

        if not variant.screens:
            raise VariantConfigError(f"Questionnaire '{variant.id}' defines no screens")
        for index, screen in enumerate(variant.screens, start=1):
            unknown = [b for b in screen if b not in BUCKETS]
            if unknown:
                raise VariantConfigError(
                    f"Unknown bucket(s) {', '.join(unknown)} in screen {index} of questionnaire '{variant.id}'"
                )
            if len(screen) > variant.screen_size:
                raise VariantConfigError(
                    f"Screen {index} of questionnaire '{variant.id}' has {len(screen)} entries; screen size is {variant.screen_size}"
                )

        if variant.checkpoint is not None and not 0 < variant.checkpoint <= variant.scheduled_count:
            raise VariantConfigError(
                f"Checkpoint {variant.checkpoint} of questionnaire '{variant.id}' is outside its {variant.scheduled_count} scheduled questions"
            )

    return config


def load_questionnaires_from_file(file_path: Optional[str] = None) -> QuestionnaireConfig:
    """
    Loads questionnaire variants from a YAML file, validates them,
    and returns a QuestionnaireConfig object.
    """
    file_path = file_path or settings.questionnaires_path
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise VariantConfigError(f"File not found: {file_path}")
    except yaml.YAMLError as e:
        raise VariantConfigError(f"Error parsing YAML file {file_path}: {e}")

    if data is None:
        raise VariantConfigError(f"YAML file is empty or invalid: {file_path}")

    config = load_questionnaire_data(data)
    logger.info(f"Loaded {len(config.questionnaires)} questionnaire variants from {file_path}")
    return config
