# meal_audit/normalizer.py
"""
Repair untrusted model output into an AnalysisResult.

Structurally incomplete input is repaired, never rejected: missing numbers
become 0, missing translations are filled, an empty item list becomes the
standard no-food result. Only input that cannot be read as a JSON object at
all is an error (MalformedResponseError), because that points at the
service, not at the photo.
"""

import json
import logging
import math
from typing import Any, Optional, Union

from json_repair import repair_json

from meal_audit.errors import MalformedResponseError
from meal_audit.schemas import (
    DEFAULT_LANGUAGE,
    NO_FOOD_ADVICE,
    SUPPORTED_LANGUAGES,
    AnalysisResult,
    FoodItem,
)

logger = logging.getLogger(__name__)

ITEM_STATUSES = ("PASS", "WARNING", "FAIL")
DEFAULT_STATUS = "WARNING"
MAX_HEALTH_RATING = 10.0

# Alternative names models emit for the same field -> schema name
ITEM_FIELD_ALIASES = {
    "kcal": "calories",
    "carbohydrates": "carbs",
    "fat": "fats",
    "note": "notes",
    "portion_size": "portion",
}
RESULT_FIELD_ALIASES = {
    "total_calories": "totalCalories",
    "total_protein": "totalProtein",
    "total_carbs": "totalCarbs",
    "total_fats": "totalFats",
    "health_rating": "healthRating",
}
RESULT_FIELDS = (
    "items",
    "totalCalories",
    "totalProtein",
    "totalCarbs",
    "totalFats",
    "healthRating",
    "advice",
)
TOTAL_FIELDS = ("totalCalories", "totalProtein", "totalCarbs", "totalFats")

# Full language names models sometimes use as keys
LANGUAGE_NAME_ALIASES = {
    "english": "en",
    "bengali": "bn",
    "bangla": "bn",
    "hindi": "hi",
    "assamese": "as",
}


def _apply_aliases(data: dict, aliases: dict[str, str]) -> dict:
    normalized = dict(data)
    for alias, name in aliases.items():
        if alias in normalized and name not in normalized:
            normalized[name] = normalized.pop(alias)
    return normalized


def _preview(text: str) -> str:
    return text[:200]


def parse_model_output(raw: Union[str, bytes, dict]) -> dict:
    """
    Turn raw model output into a dict.

    Strict JSON first. If that fails, json_repair gets a chance (markdown
    fences, trailing commas, truncated output), but its result is only
    trusted when it carries at least one analysis field; json_repair will
    happily turn prose into ``{}`` or ``""``.
    """
    if isinstance(raw, dict):
        return raw

    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedResponseError(f"Model output is not UTF-8 text: {e}")

    if not isinstance(raw, str):
        raise MalformedResponseError(f"Unsupported model output type: {type(raw).__name__}")

    try:
        data = json.loads(raw)
    except ValueError:
        pass
    else:
        if isinstance(data, dict):
            return data
        raise MalformedResponseError(
            f"Model output is JSON {type(data).__name__}, expected an object",
            details={"raw_preview": _preview(raw)},
        )

    repaired = repair_json(raw, return_objects=True) if raw.strip() else None
    if isinstance(repaired, dict) and any(field in repaired for field in _known_fields()):
        logger.info("Model output needed JSON repair")
        return repaired

    logger.warning("Unparsable model output, raw_preview: %s", _preview(raw))
    raise MalformedResponseError(
        "Model output could not be parsed as an analysis object",
        details={"raw_preview": _preview(raw)},
    )


def _known_fields() -> tuple[str, ...]:
    return RESULT_FIELDS + tuple(RESULT_FIELD_ALIASES)


def coerce_number(value: Any, upper: Optional[float] = None) -> float:
    """Non-negative finite float, 0.0 for anything else."""
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    if upper is not None:
        number = min(number, upper)
    return number


def _text_value(value: Any) -> str:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if isinstance(value, str):
        return value.strip()
    return ""


def normalize_localized(value: Any) -> dict[str, str]:
    """
    Fill every supported language.

    A bare string counts as English. Keys are matched case-insensitively and
    full language names ("English", "Bangla") are accepted. Gaps are filled
    from English, then from the first language that has text, then from any
    other key's text, then with "".
    """
    if isinstance(value, str):
        value = {DEFAULT_LANGUAGE: value}
    elif not isinstance(value, dict):
        value = {}

    present: dict[str, str] = {}
    others: list[str] = []
    for key, raw_text in value.items():
        text = _text_value(raw_text)
        if not text:
            continue
        folded = str(key).strip().lower()
        lang = LANGUAGE_NAME_ALIASES.get(folded, folded)
        if lang in SUPPORTED_LANGUAGES:
            present.setdefault(lang, text)
        else:
            others.append(text)

    fallback = present.get(DEFAULT_LANGUAGE)
    if fallback is None:
        fallback = next((present[lang] for lang in SUPPORTED_LANGUAGES if lang in present), None)
    if fallback is None:
        fallback = others[0] if others else ""

    return {lang: present.get(lang, fallback) for lang in SUPPORTED_LANGUAGES}


def normalize_status(value: Any) -> str:
    if isinstance(value, str) and value.strip().upper() in ITEM_STATUSES:
        return value.strip().upper()
    return DEFAULT_STATUS


def normalize_item(raw_item: dict) -> FoodItem:
    item = _apply_aliases(raw_item, ITEM_FIELD_ALIASES)
    return FoodItem(
        name=normalize_localized(item.get("name")),
        portion=normalize_localized(item.get("portion")),
        calories=coerce_number(item.get("calories")),
        protein=coerce_number(item.get("protein")),
        carbs=coerce_number(item.get("carbs")),
        fats=coerce_number(item.get("fats")),
        notes=normalize_localized(item.get("notes")),
        status=normalize_status(item.get("status")),
    )


def no_food_result() -> AnalysisResult:
    """The standard refusal result: no items, zero totals, no-food advice."""
    return AnalysisResult(
        items=[],
        total_calories=0,
        total_protein=0,
        total_carbs=0,
        total_fats=0,
        health_rating=0,
        advice=dict(NO_FOOD_ADVICE),
    )


def normalize_analysis(raw: Union[str, bytes, dict]) -> AnalysisResult:
    """Parse and repair a model response. Raises MalformedResponseError only for unparsable input."""
    data = _apply_aliases(parse_model_output(raw), RESULT_FIELD_ALIASES)

    raw_items = data.get("items")
    if not isinstance(raw_items, list):
        if raw_items is not None:
            logger.warning("Model returned non-list items (%s), treating as empty", type(raw_items).__name__)
        raw_items = []

    items = []
    for raw_item in raw_items:
        if not isinstance(raw_item, dict):
            logger.warning("Dropping non-object item: %r", raw_item)
            continue
        items.append(normalize_item(raw_item))

    if not items:
        if any(coerce_number(data.get(f)) for f in TOTAL_FIELDS) or data.get("advice"):
            logger.info("Model returned no items alongside totals/advice; replaced with no-food result")
        return no_food_result()

    return AnalysisResult(
        items=items,
        total_calories=coerce_number(data.get("totalCalories")),
        total_protein=coerce_number(data.get("totalProtein")),
        total_carbs=coerce_number(data.get("totalCarbs")),
        total_fats=coerce_number(data.get("totalFats")),
        health_rating=coerce_number(data.get("healthRating"), upper=MAX_HEALTH_RATING),
        advice=normalize_localized(data.get("advice")),
    )
