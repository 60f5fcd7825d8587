# tests/conftest.py
import pytest

from meal_audit.normalizer import normalize_analysis


def localized(en: str, **others: str) -> dict:
    return {"en": en, "bn": others.get("bn", en), "hi": others.get("hi", en), "as": others.get("as", en)}


def make_raw_analysis(**overrides) -> dict:
    """A well-formed model answer for a rice + dal plate."""
    raw = {
        "items": [
            {
                "name": localized("Rice", bn="ভাত", hi="चावल", **{"as": "ভাত"}),
                "portion": localized("1 plate"),
                "calories": 260,
                "protein": 5,
                "carbs": 57,
                "fats": 0.6,
                "notes": localized("Steamed white rice"),
                "status": "PASS",
            },
            {
                "name": localized("Masoor Dal", bn="মসুর ডাল", hi="मसूर दाल", **{"as": "মচুৰ দাইল"}),
                "portion": localized("1 bowl"),
                "calories": 180,
                "protein": 12,
                "carbs": 26,
                "fats": 4,
                "notes": localized("Tempered with mustard oil"),
                "status": "WARNING",
            },
        ],
        "totalCalories": 440,
        "totalProtein": 17,
        "totalCarbs": 83,
        "totalFats": 4.6,
        "healthRating": 7,
        "advice": localized("Add a vegetable side for fibre."),
    }
    raw.update(overrides)
    return raw


@pytest.fixture
def raw_analysis() -> dict:
    return make_raw_analysis()


@pytest.fixture
def analysis(raw_analysis):
    return normalize_analysis(raw_analysis)
