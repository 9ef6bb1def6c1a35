from pathlib import Path
import os

from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file if it exists, for local development
# In production, environment variables should be set directly.
if os.path.exists(".env"):
    from dotenv import load_dotenv
    load_dotenv()

ASSETS_DIR = Path(__file__).resolve().parent / "assets"


class EngineSettings(BaseSettings):
    # Tabular sources: local paths or http(s) URLs
    questions_source: str = str(ASSETS_DIR / "questions.tsv")
    vectors_source: str = str(ASSETS_DIR / "category_vectors.tsv")
    coarse_grid_source: str = str(ASSETS_DIR / "grid_3x3.tsv")
    fine_grid_source: str = str(ASSETS_DIR / "grid_9x9.tsv")
    supplementary_axes_source: str = str(ASSETS_DIR / "supplementary_axes.tsv")
    questionnaires_path: str = str(ASSETS_DIR / "questionnaires.yml")

    # Classification tuning
    macro_boundary: float = 33.0
    default_boundary_band: float = 15.0
    skip_limit_ratio: float = 0.5

    http_timeout: float = 10.0
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix='COMPASS_')


# Instantiate settings
settings = EngineSettings()
