"""Tests for the response extraction cascade."""

import json

import pytest

from menureader.extraction import (
    PRICE,
    balanced_json,
    build_search_query,
    clean_search_query,
    extract,
    extract_detected_language,
    fenced_json,
    first_success,
    keyword_filtered_lines,
    line_patterns,
)
from menureader.models import DishRecord

ITEMS = [
    {
        "originalName": "宫保鸡丁",
        "translatedName": "Kung Pao Chicken",
        "description": "Spicy diced chicken with peanuts",
        "price": "¥38",
        "confidence": 0.92,
        "category": "Main",
        "imageSearchQuery": "kung pao chicken",
    },
    {"originalName": "炒饭", "translatedName": "Fried Rice", "confidence": 0.88},
]


class TestBalancedJson:
    def test_fields_mapped_verbatim(self):
        records = balanced_json(json.dumps({"items": ITEMS}))
        assert len(records) == 2
        first = records[0]
        assert first.original_name == "宫保鸡丁"
        assert first.translated_name == "Kung Pao Chicken"
        assert first.description == "Spicy diced chicken with peanuts"
        assert first.price == "¥38"
        assert first.confidence == 0.92
        assert first.category == "Main"
        assert first.image_search_query == "kung pao chicken"
        assert [r.index for r in records] == [0, 1]

    def test_surrounded_by_prose(self):
        text = "Sure! Here you go:\n" + json.dumps({"items": ITEMS}) + "\nEnjoy."
        records = balanced_json(text)
        assert [r.original_name for r in records] == ["宫保鸡丁", "炒饭"]

    def test_braces_inside_strings(self):
        doc = {"items": [{"originalName": "Curly {fries}", "description": "with } brace"}]}
        records = balanced_json("prefix " + json.dumps(doc))
        assert records[0].original_name == "Curly {fries}"

    def test_missing_items_fails(self):
        assert balanced_json('{"dishes": []}') is None

    def test_no_object(self):
        assert balanced_json("no json here") is None

    def test_malformed_items_skipped(self):
        doc = {"items": [{"translatedName": "nameless"}, {"originalName": "Soup"}]}
        records = balanced_json(json.dumps(doc))
        assert [r.original_name for r in records] == ["Soup"]
        assert records[0].index == 0

    def test_default_and_clamped_confidence(self):
        doc = {"items": [{"originalName": "A"}, {"originalName": "B", "confidence": 3}]}
        records = balanced_json(json.dumps(doc))
        assert records[0].confidence == 0.95
        assert records[1].confidence == 1.0


class TestFencedJson:
    def test_same_records_as_inner_content(self):
        inner = json.dumps({"items": ITEMS}, indent=2)
        fenced = f"```json\n{inner}\n```"
        assert fenced_json(fenced) == balanced_json(inner)

    def test_plain_fence(self):
        inner = json.dumps({"items": ITEMS[:1]})
        records = fenced_json(f"```\n{inner}\n```")
        assert records[0].original_name == "宫保鸡丁"

    def test_missing_items_is_failure(self):
        assert fenced_json('```json\n{"foo": 1}\n```') is None


class TestLinePatterns:
    def test_colon_price_and_bare_name(self):
        records = line_patterns("Kung Pao Chicken: $12.99\nFried Rice")
        assert len(records) == 2
        assert records[0].original_name == "Kung Pao Chicken"
        assert records[0].price == "$12.99"
        assert records[0].confidence == 0.8
        assert records[1].original_name == "Fried Rice"
        assert records[1].price is None
        assert records[1].confidence == 0.7

    def test_space_separated_price(self):
        records = line_patterns("Mapo Tofu 28元\nラーメン 800円")
        assert records[0].original_name == "Mapo Tofu"
        assert records[0].price == "28元"
        assert records[1].original_name == "ラーメン"
        assert records[1].price == "800円"

    def test_short_lines_skipped(self):
        records = line_patterns("a\n\nDumplings")
        assert [r.original_name for r in records] == ["Dumplings"]

    def test_empty_text(self):
        assert line_patterns("") is None


class TestKeywordFilteredLines:
    def test_drops_prompt_echo(self):
        text = (
            "Here is the analysis of the menu in JSON format\n"
            "以下是菜单\n"
            "メニューを解析しました\n"
            "Spring Rolls: $5\n"
            "Green Tea"
        )
        records = keyword_filtered_lines(text)
        assert [r.original_name for r in records] == ["Spring Rolls", "Green Tea"]
        assert records[0].confidence == 0.8
        assert records[1].confidence == 0.7

    def test_only_boilerplate(self):
        assert keyword_filtered_lines("Analyze the menu\nReturn JSON format") is None


class TestCascade:
    def test_extract_prefers_json(self):
        text = "Result:\n" + json.dumps({"items": ITEMS})
        records = extract(text)
        assert records[0].confidence == 0.92

    def test_extract_falls_back_to_lines(self):
        records = extract("Kung Pao Chicken: $12.99\nFried Rice")
        assert [r.price for r in records] == ["$12.99", None]

    def test_extract_empty(self):
        assert extract("") == []
        assert extract("   \n ") == []

    def test_empty_items_array_is_empty_result(self):
        assert extract('{"items": []}') == []

    def test_pretty_printed_empty_items_is_empty_result(self):
        text = '```json\n{\n  "detectedLanguage": "en",\n  "items": []\n}\n```'
        assert extract(text) == []

    def test_all_items_malformed_is_empty_result(self):
        doc = {"detectedLanguage": "zh", "items": [{"translatedName": "nameless"}]}
        assert extract(json.dumps(doc, indent=2)) == []

    def test_json_members_not_taken_as_dishes(self):
        text = '{\n  "detectedLanguage": "en",\n  "items": [\n'
        assert line_patterns(text) is None

    def test_first_success_skips_failing_strategy(self):
        def broken(text):
            raise RuntimeError("bad")

        def unusable(text):
            return None

        def good(text):
            return [DishRecord(original_name="Soup")]

        records = first_success((broken, unusable, good), "x")
        assert records[0].original_name == "Soup"

    def test_first_success_stops_at_empty_answer(self):
        def empty(text):
            return []

        def good(text):
            return [DishRecord(original_name="Soup")]

        assert first_success((empty, good), "x") == []

    def test_first_success_nothing(self):
        assert first_success((lambda t: None,), "x") == []


class TestPrice:
    @pytest.mark.parametrize(
        "text", ["$12.99", "¥800", "￥38", "€9,50", "£7", "12.99€", "38元", "800円", "20块"]
    )
    def test_recognized(self, text):
        assert PRICE.search(text).group(0) == text


class TestSearchQuery:
    def test_clean_strips_price_and_punctuation(self):
        assert clean_search_query("Kung Pao Chicken - $12.99!") == "Kung Pao Chicken food dish"

    def test_clean_strips_cjk_price(self):
        assert clean_search_query("麻婆豆腐 28元") == "麻婆豆腐 food dish"

    def test_clean_empty(self):
        assert clean_search_query("$5") == ""

    def test_model_query_wins(self):
        record = DishRecord(original_name="宫保鸡丁", image_search_query="kung pao chicken")
        assert build_search_query(record) == "kung pao chicken"

    def test_enriched_with_category_and_keywords(self):
        record = DishRecord(
            original_name="宫保鸡丁",
            translated_name="Kung Pao Chicken",
            category="Main",
            description="Spicy diced chicken with peanuts",
        )
        assert build_search_query(record) == "Kung Pao Chicken food dish Main spicy diced"


class TestDetectedLanguage:
    def test_present(self):
        assert extract_detected_language('{"detectedLanguage": "zh", "items": []}') == "zh"

    def test_absent(self):
        assert extract_detected_language("plain text") == "auto"
