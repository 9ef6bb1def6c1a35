# This file makes the 'compass_engine' directory a Python package.

from .catalog import QuestionCatalog, load_catalog
from .classifier import classify
from .grid import CategoryGrid, load_grid
from .logging_config import setup_logging
from .matcher import FineMatcher
from .session import QuizSession, SessionState, open_session
from .vectors import CategoryVectorStore, load_vectors

__all__ = [
    "QuestionCatalog",
    "load_catalog",
    "classify",
    "CategoryGrid",
    "load_grid",
    "setup_logging",
    "FineMatcher",
    "QuizSession",
    "SessionState",
    "open_session",
    "CategoryVectorStore",
    "load_vectors",
]
