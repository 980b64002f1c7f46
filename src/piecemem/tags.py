"""Tag encoding and tag-filter construction.

Tags live in a single string field, each wrapped in the delimiter:
``["a", "b"]`` is stored as ``",a,b,"``. Filtering for tag ``T`` is then a
substring check for ``",T,"``, which cannot match inside a longer tag
(``art`` never matches ``start``).
"""

from dataclasses import dataclass
from typing import Any, Optional, Sequence

TAG_DELIMITER = ","
TAGS_FIELD = "tags"


def encode_tags(tags: Sequence[str]) -> str:
    """Encode tags into their delimited storage form."""
    return TAG_DELIMITER + TAG_DELIMITER.join(tags) + TAG_DELIMITER


def decode_tags(encoded: str) -> list[str]:
    """Decode a delimited tag string. Empty or malformed input gives ``[]``."""
    if not encoded:
        return []
    if encoded.startswith(TAG_DELIMITER):
        encoded = encoded[1:]
    if encoded.endswith(TAG_DELIMITER):
        encoded = encoded[:-1]
    return [tag for tag in encoded.split(TAG_DELIMITER) if tag]


def tag_needle(tag: str) -> str:
    """The substring whose presence marks ``tag`` in an encoded field."""
    return f"{TAG_DELIMITER}{tag}{TAG_DELIMITER}"


class TagFilter:
    """Base node of the tag-filter AST."""

    def to_where(self) -> Optional[dict[str, Any]]:
        raise NotImplementedError

    def matches(self, encoded: str) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class NoFilter(TagFilter):
    """Matches every piece."""

    def to_where(self) -> Optional[dict[str, Any]]:
        return None

    def matches(self, encoded: str) -> bool:
        return True


@dataclass(frozen=True)
class ContainsTag(TagFilter):
    """Matches pieces carrying one tag."""

    tag: str

    def to_where(self) -> Optional[dict[str, Any]]:
        return {TAGS_FIELD: {"$contains": tag_needle(self.tag)}}

    def matches(self, encoded: str) -> bool:
        return tag_needle(self.tag) in encoded


@dataclass(frozen=True)
class AllTags(TagFilter):
    """Matches pieces carrying every one of several tags."""

    clauses: tuple[ContainsTag, ...]

    def to_where(self) -> Optional[dict[str, Any]]:
        return {"$and": [clause.to_where() for clause in self.clauses]}

    def matches(self, encoded: str) -> bool:
        return all(clause.matches(encoded) for clause in self.clauses)


def build_tag_filter(tags: Optional[Sequence[str]]) -> TagFilter:
    """
    Build the filter for a tag list.

    No tags gives ``NoFilter``, one tag a ``ContainsTag`` and several an
    ``AllTags`` conjunction.
    """
    if not tags:
        return NoFilter()
    if len(tags) == 1:
        return ContainsTag(tags[0])
    return AllTags(tuple(ContainsTag(tag) for tag in tags))
