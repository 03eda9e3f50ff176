"""Tests for JSON extraction from model output."""

import pytest

from visibility_report.core.exceptions import ResponseParseError
from visibility_report.pipeline.parsing import extract_json_array, extract_json_object


class TestExtractJsonArray:
    def test_plain_array(self):
        assert extract_json_array('["a", "b"]') == ["a", "b"]

    def test_markdown_fence_and_prose(self):
        text = 'Sure! Here are the questions:\n```json\n["Is Acme good?", "Acme vs Globex?"]\n```\nEnjoy.'
        assert extract_json_array(text) == ["Is Acme good?", "Acme vs Globex?"]

    def test_skips_bracketed_prose_before_the_array(self):
        text = 'Note [draft] follows: ["one", "two"]'
        assert extract_json_array(text) == ["one", "two"]

    def test_object_is_not_an_array(self):
        with pytest.raises(ResponseParseError):
            extract_json_array('{"questions": 3}')

    def test_malformed(self):
        with pytest.raises(ResponseParseError):
            extract_json_array('["unterminated", ')

    def test_empty(self):
        with pytest.raises(ResponseParseError):
            extract_json_array("")


class TestExtractJsonObject:
    def test_object_inside_fence(self):
        text = '```json\n{"tone": "positive", "brand_mentions": 4}\n```'
        assert extract_json_object(text) == {"tone": "positive", "brand_mentions": 4}

    def test_first_well_formed_object_wins(self):
        text = 'Use {this} template. {"a": 1} and {"b": 2}'
        assert extract_json_object(text) == {"a": 1}

    def test_nested_object(self):
        assert extract_json_object('x {"a": {"b": [1, 2]}} y') == {"a": {"b": [1, 2]}}

    def test_no_object(self):
        with pytest.raises(ResponseParseError, match="object"):
            extract_json_object("no json here")
