"""Meal photo nutrition analysis: fingerprint, cache, call the vision model, normalize."""

from meal_audit.cache import CACHE_SCHEMA_VERSION, ResultCache
from meal_audit.errors import AnalysisError, ErrorKind
from meal_audit.hashing import fingerprint
from meal_audit.normalizer import normalize_analysis
from meal_audit.orchestrator import AnalysisOrchestrator
from meal_audit.schemas import AnalysisResult, FoodItem

__all__ = [
    "CACHE_SCHEMA_VERSION",
    "AnalysisError",
    "AnalysisOrchestrator",
    "AnalysisResult",
    "ErrorKind",
    "FoodItem",
    "ResultCache",
    "fingerprint",
    "normalize_analysis",
]
