"""Tests for template classification and tag-string helpers."""

import pytest

from waiver_sync.config import DEFAULT_TEMPLATE_CATEGORIES
from waiver_sync.tags import BASE_TAG, TagClassifier, join_tags, merge_tags, parse_tags


class TestTagClassifier:
    """Template identifier to tag list."""

    @pytest.fixture
    def classifier(self):
        return TagClassifier(DEFAULT_TEMPLATE_CATEGORIES)

    @pytest.mark.parametrize("template_id,category", list(DEFAULT_TEMPLATE_CATEGORIES.items()))
    def test_known_templates(self, classifier, template_id, category):
        assert classifier.classify(template_id) == ["Signed Waiver", category]

    @pytest.mark.parametrize("template_id", ["unknown-template", "", None])
    def test_unknown_templates_get_base_tag_only(self, classifier, template_id):
        assert classifier.classify(template_id) == ["Signed Waiver"]

    def test_mapping_is_injectable(self):
        classifier = TagClassifier({"new-template": "Climbing Waiver"})
        assert classifier.classify("new-template") == [BASE_TAG, "Climbing Waiver"]
        assert classifier.classify("qfyohqaysnfk4ybccqhyzk") == [BASE_TAG]

    def test_category_equal_to_base_tag_not_duplicated(self):
        classifier = TagClassifier({"t": BASE_TAG})
        assert classifier.classify("t") == [BASE_TAG]


class TestTagStrings:
    """Shopify comma-delimited tag strings."""

    def test_parse_tags(self):
        assert parse_tags("Signed Waiver, Spectator Waiver") == ["Signed Waiver", "Spectator Waiver"]

    def test_parse_tags_tolerates_spacing_and_duplicates(self):
        assert parse_tags("a,b , a,, c") == ["a", "b", "c"]

    @pytest.mark.parametrize("value", ["", None])
    def test_parse_empty(self, value):
        assert parse_tags(value) == []

    def test_merge_is_union_preserving_order(self):
        merged = merge_tags(["Signed Waiver", "Spectator Waiver"], ["Signed Waiver", "Action Sports Waiver"])
        assert merged == ["Signed Waiver", "Spectator Waiver", "Action Sports Waiver"]

    def test_merge_is_idempotent(self):
        once = merge_tags(["VIP"], ["Signed Waiver"])
        assert merge_tags(once, ["Signed Waiver"]) == once

    def test_join_tags(self):
        assert join_tags(["Signed Waiver", "Action Sports Waiver"]) == "Signed Waiver, Action Sports Waiver"
