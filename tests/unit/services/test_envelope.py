"""Unit tests for tagged-block envelope helpers."""

import pytest

from wikigen.errors import GenerationError
from wikigen.services.envelope import find_block, parse_json_block, require_version, slugify


class TestFindBlock:
    """Tests for locating tagged blocks."""

    def test_absent_tag_returns_none(self) -> None:
        assert find_block("plain text", "document") is None

    def test_reads_body_and_version(self) -> None:
        block = find_block('intro <document version="1">body</document> tail', "document")

        assert block.body == "body"
        assert block.version == "1"
        assert block.end == len('intro <document version="1">body</document>')

    def test_tag_match_is_case_insensitive(self) -> None:
        block = find_block("<Sources>[]</SOURCES>", "sources")

        assert block.body == "[]"
        assert block.version is None

    def test_unterminated_block_raises(self) -> None:
        with pytest.raises(GenerationError, match="unterminated"):
            find_block("<document>never closed", "document")

    def test_last_close_spans_nested_mentions(self) -> None:
        text = "<document>Use </document> tags like this.</document>"

        assert find_block(text, "document").body == "Use "
        assert find_block(text, "document", last_close=True).body == "Use </document> tags like this."


class TestParseJsonBlock:
    """Tests for JSON block bodies."""

    def test_plain_json(self) -> None:
        assert parse_json_block(' ["a.py"] ', "sources") == ["a.py"]

    def test_fenced_json_is_tolerated(self) -> None:
        assert parse_json_block('\n```json\n{"items": []}\n```\n', "catalog") == {"items": []}

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(GenerationError, match="<sources>"):
            parse_json_block("[a.py]", "sources")


class TestRequireVersion:
    """Tests for envelope version checks."""

    def test_missing_version_is_accepted(self) -> None:
        require_version(find_block("<catalog>{}</catalog>", "catalog"), "catalog", "1")

    def test_other_version_is_rejected(self) -> None:
        block = find_block('<catalog version="2">{}</catalog>', "catalog")

        with pytest.raises(GenerationError, match="version '2'"):
            require_version(block, "catalog", "1")


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("Getting Started", "getting-started"),
        ("  API / Reference  ", "api-reference"),
        ("Café Überblick", "cafe-uberblick"),
        ("系统架构", "page"),
    ],
)
def test_slugify(value: str, expected: str) -> None:
    assert slugify(value) == expected
