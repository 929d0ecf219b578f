"""
Waiver template classification and Shopify tag-string helpers.
"""

from collections.abc import Iterable, Mapping

BASE_TAG = "Signed Waiver"

# Shopify stores customer tags as one comma-separated string
TAG_DELIMITER = ", "


class TagClassifier:
    """Maps a waiver template identifier to the tags applied to the customer.

    The category table is injected (normally from the `templates` section of
    the config) so new templates need no code change.
    """

    def __init__(self, categories: Mapping[str, str], base_tag: str = BASE_TAG):
        self.categories = dict(categories)
        self.base_tag = base_tag

    def classify(self, template_id: str | None) -> list[str]:
        tags = [self.base_tag]
        category = self.categories.get(template_id) if template_id else None
        if category and category != self.base_tag:
            tags.append(category)
        return tags


def parse_tags(tag_string: str | None) -> list[str]:
    """Split a Shopify tag string into unique tags, keeping first-seen order."""
    if not tag_string:
        return []
    seen: dict[str, None] = {}
    for tag in tag_string.split(","):
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return list(seen)


def merge_tags(existing: Iterable[str], new: Iterable[str]) -> list[str]:
    """Set union of two tag lists; existing order first, then new tags."""
    merged: dict[str, None] = dict.fromkeys(existing)
    for tag in new:
        merged.setdefault(tag, None)
    return list(merged)


def join_tags(tags: Iterable[str]) -> str:
    return TAG_DELIMITER.join(tags)
