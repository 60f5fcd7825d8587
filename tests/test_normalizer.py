# tests/test_normalizer.py
"""
Unit tests for response normalization (untrusted model output).
"""

import json

import pytest

from meal_audit.errors import ErrorKind, MalformedResponseError
from meal_audit.normalizer import (
    coerce_number,
    no_food_result,
    normalize_analysis,
    normalize_localized,
    parse_model_output,
)
from meal_audit.schemas import NO_FOOD_ADVICE, SUPPORTED_LANGUAGES

from tests.conftest import localized, make_raw_analysis


def assert_refusal(result):
    assert result.items == []
    assert result.total_calories == 0
    assert result.total_protein == 0
    assert result.total_carbs == 0
    assert result.total_fats == 0
    assert result.health_rating == 0
    assert dict(result.advice) == NO_FOOD_ADVICE


class TestParseModelOutput:
    def test_valid_json_string(self, raw_analysis):
        """Plain JSON text parses as-is."""
        assert parse_model_output(json.dumps(raw_analysis)) == raw_analysis

    def test_bytes_input(self, raw_analysis):
        """UTF-8 bytes are accepted."""
        assert parse_model_output(json.dumps(raw_analysis).encode("utf-8")) == raw_analysis

    def test_markdown_wrapped_json(self):
        """JSON wrapped in markdown should still parse (json_repair helps)."""
        text = """```json
{
    "items": [],
    "totalCalories": 0
}
```"""
        data = parse_model_output(text)
        assert data["items"] == []

    def test_trailing_comma_repaired(self):
        """Small JSON mistakes are repaired."""
        data = parse_model_output('{"items": [], "healthRating": 3,}')
        assert data["healthRating"] == 3

    @pytest.mark.parametrize(
        "text",
        [
            "this is not json at all!!!",
            "",
            "   ",
            "I'm sorry, I can't analyze this image.",
        ],
    )
    def test_garbage_is_malformed(self, text):
        """Prose and empty output are malformed, not silently repaired."""
        with pytest.raises(MalformedResponseError) as exc_info:
            parse_model_output(text)
        assert exc_info.value.kind == ErrorKind.MALFORMED_RESPONSE

    @pytest.mark.parametrize("text", ["[1, 2, 3]", "42", '"just a string"', "null"])
    def test_non_object_json_is_malformed(self, text):
        """Valid JSON that is not an object is malformed."""
        with pytest.raises(MalformedResponseError):
            parse_model_output(text)

    def test_invalid_utf8_is_malformed(self):
        """Bytes that are not UTF-8 are malformed."""
        with pytest.raises(MalformedResponseError):
            parse_model_output(b"\xff\xfe{")


class TestCoercion:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (12, 12.0),
            (3.5, 3.5),
            ("120", 120.0),
            ("120 kcal", 0.0),
            (None, 0.0),
            (True, 0.0),
            (-4, 0.0),
            (float("nan"), 0.0),
            (float("inf"), 0.0),
            ([1], 0.0),
        ],
    )
    def test_coerce_number(self, value, expected):
        """Strings, negatives and non-finite values coerce to sane floats."""
        assert coerce_number(value) == expected

    def test_upper_bound(self):
        """Values above the bound are clamped."""
        assert coerce_number(14, upper=10) == 10

    def test_item_numbers_coerced(self):
        """Item macros given as strings become floats."""
        raw = make_raw_analysis()
        raw["items"][0].update({"calories": "abc", "protein": None, "carbs": "40"})
        del raw["items"][0]["fats"]

        item = normalize_analysis(raw).items[0]
        assert item.calories == 0
        assert item.protein == 0
        assert item.carbs == 40
        assert item.fats == 0

    def test_aggregate_numbers_coerced(self):
        """Totals and health rating are coerced and clamped."""
        raw = make_raw_analysis(totalCalories="lots", healthRating=42)
        del raw["totalFats"]

        result = normalize_analysis(raw)
        assert result.total_calories == 0
        assert result.total_fats == 0
        assert result.health_rating == 10

    def test_alternative_field_names(self):
        """snake_case and alternative field names are accepted."""
        raw = make_raw_analysis(total_calories=500, health_rating=6)
        del raw["totalCalories"], raw["healthRating"]
        raw["items"][0] = {
            "name": "Luchi",
            "portion": "2 pieces",
            "kcal": 200,
            "protein": 4,
            "carbohydrates": 24,
            "fat": 10,
            "notes": "Deep fried",
            "status": "fail",
        }

        result = normalize_analysis(raw)
        item = result.items[0]
        assert (item.calories, item.carbs, item.fats) == (200, 24, 10)
        assert item.status == "FAIL"
        assert result.total_calories == 500
        assert result.health_rating == 6

    @pytest.mark.parametrize("status", [None, "", "OK", 3])
    def test_unknown_status_becomes_warning(self, status):
        """Missing or unknown item status defaults to WARNING."""
        raw = make_raw_analysis()
        raw["items"][0]["status"] = status
        assert normalize_analysis(raw).items[0].status == "WARNING"


class TestLocalizedText:
    def test_missing_language_falls_back_to_english(self):
        """Missing translations are copied from English."""
        assert normalize_localized({"en": "Rice", "bn": "ভাত"}) == {
            "en": "Rice",
            "bn": "ভাত",
            "hi": "Rice",
            "as": "Rice",
        }

    def test_without_english_uses_first_present(self):
        """Without English, the first supported language with text fills the gaps."""
        result = normalize_localized({"hi": "चावल", "bn": "ভাত"})
        assert result["en"] == "ভাত"
        assert result["as"] == "ভাত"
        assert result["hi"] == "चावल"

    def test_empty_strings_count_as_missing(self):
        """Blank translations are filled like missing ones."""
        assert normalize_localized({"en": "Dal", "hi": "  "})["hi"] == "Dal"

    def test_plain_string_is_english(self):
        """A bare string is treated as English text."""
        assert normalize_localized("Fish curry") == {lang: "Fish curry" for lang in SUPPORTED_LANGUAGES}

    @pytest.mark.parametrize("value", [None, 5, [], {}])
    def test_nothing_usable_gives_empty_strings(self, value):
        """No usable text gives empty strings in every language."""
        assert normalize_localized(value) == {lang: "" for lang in SUPPORTED_LANGUAGES}

    def test_unknown_languages_are_dropped(self):
        """Unsupported keys do not appear in the output."""
        assert set(normalize_localized({"en": "Rice", "fr": "Riz"})) == set(SUPPORTED_LANGUAGES)

    @pytest.mark.parametrize(
        "value",
        [{"EN": "Rice"}, {" En ": "Rice"}, {"english": "Rice"}, {"English": "Rice", "hi": ""}],
    )
    def test_language_keys_matched_case_insensitively(self, value):
        """Upper-case codes and full language names still count as English."""
        assert normalize_localized(value) == {lang: "Rice" for lang in SUPPORTED_LANGUAGES}

    def test_language_names_map_to_codes(self):
        """Bangla and Hindi keys land on their codes; gaps still come from English."""
        result = normalize_localized({"Bangla": "ভাত", "HINDI": "चावल", "en": "Rice"})
        assert result == {"en": "Rice", "bn": "ভাত", "hi": "चावल", "as": "Rice"}

    def test_unsupported_language_text_used_as_last_resort(self):
        """Text under an unknown key fills every language rather than being lost."""
        assert normalize_localized({"fr": "Riz"}) == {lang: "Riz" for lang in SUPPORTED_LANGUAGES}

    def test_supported_language_preferred_over_unknown_key(self):
        """Unknown keys are only used when no supported language has text."""
        assert normalize_localized({"fr": "Riz", "hi": "चावल"})["en"] == "चावल"

    def test_item_name_hi_falls_back_to_en(self):
        """An item name missing Hindi gets the English name."""
        raw = make_raw_analysis()
        raw["items"][0]["name"] = {"en": "Rice", "bn": "ভাত", "as": "ভাত"}

        item = normalize_analysis(raw).items[0]
        assert item.name["hi"] == item.name["en"] == "Rice"


class TestEmptyItems:
    @pytest.mark.parametrize(
        "overrides",
        [
            {"items": []},
            {"items": [], "totalCalories": 500, "advice": {"en": "garbage"}},
            {"items": [], "totalProtein": "x", "healthRating": 9, "advice": "Looks healthy!"},
            {"items": None, "totalCarbs": 80},
            {"items": "rice", "totalFats": 12},
            {"items": ["rice", 3, None]},
        ],
    )
    def test_empty_items_force_refusal(self, overrides):
        """No items means the no-food result, whatever totals or advice came with it."""
        assert_refusal(normalize_analysis(make_raw_analysis(**overrides)))

    def test_missing_items_key(self):
        """A result without items is a refusal."""
        raw = make_raw_analysis()
        del raw["items"]
        assert_refusal(normalize_analysis(raw))

    def test_empty_object(self):
        """An empty object is a refusal, not an error."""
        assert_refusal(normalize_analysis("{}"))

    def test_refusal_text_in_every_language(self):
        """The refusal advice is filled for every language."""
        advice = no_food_result().advice
        assert set(advice) == set(SUPPORTED_LANGUAGES)
        assert all(advice[lang] for lang in SUPPORTED_LANGUAGES)

    def test_non_object_items_dropped_but_valid_ones_kept(self):
        """Junk entries in items are skipped."""
        raw = make_raw_analysis()
        raw["items"].append("stray string")
        assert len(normalize_analysis(raw).items) == 2


class TestWellFormedResults:
    def test_values_untouched(self, raw_analysis):
        """Well-formed values pass through unchanged."""
        result = normalize_analysis(raw_analysis)

        assert [item.calories for item in result.items] == [260, 180]
        assert result.total_calories == 440
        assert result.total_fats == 4.6
        assert result.health_rating == 7
        assert result.items[1].name["bn"] == "মসুর ডাল"

    def test_inconsistent_totals_not_second_guessed(self):
        """Totals are not recomputed from the items."""
        result = normalize_analysis(make_raw_analysis(totalCalories=0))
        assert result.total_calories == 0
        assert len(result.items) == 2

    def test_item_order_preserved(self, raw_analysis):
        """Items keep the model's order."""
        names = [item.name["en"] for item in normalize_analysis(raw_analysis).items]
        assert names == ["Rice", "Masoor Dal"]


class TestIdempotence:
    @pytest.mark.parametrize(
        "raw",
        [
            make_raw_analysis(),
            make_raw_analysis(items=[], totalCalories=500, advice={"en": "garbage"}),
            {"items": [{"name": {"bn": "ভাত"}, "calories": "12", "status": "pass"}], "healthRating": 99},
            {"items": [{}]},
            {},
        ],
    )
    def test_normalizing_twice_equals_once(self, raw):
        """Normalizing an already-normalized result changes nothing."""
        once = normalize_analysis(raw)
        twice = normalize_analysis(once.to_wire())
        assert twice == once

    def test_serialized_json_round_trip(self, raw_analysis):
        """The camelCase JSON of a result normalizes back to the same result."""
        once = normalize_analysis(json.dumps(raw_analysis))
        assert normalize_analysis(json.dumps(once.to_wire(), ensure_ascii=False)) == once


class TestMalformedIsNotEmpty:
    def test_unparsable_raises_instead_of_refusal(self):
        """Unreadable output is an error, never a fake refusal."""
        with pytest.raises(MalformedResponseError):
            normalize_analysis("<html>502 Bad Gateway</html>")


def test_localized_helper_matches_schema():
    """The test helper produces valid LocalizedText."""
    assert set(localized("x")) == set(SUPPORTED_LANGUAGES)
