"""Hashtag extraction from note bodies."""
import logging
import re
from typing import Iterable, List, Set

from connected_notes.exceptions import TagError

logger = logging.getLogger(__name__)

TAG_DELIMITER = "#"

# Start of line or whitespace, then '#', then one or more characters that are
# neither '#' nor whitespace. '##heading' and 'a#b' are not tags.
TAG_MATCH_REGEX = re.compile(r"(^|\s)(#[^#\s]+)", re.IGNORECASE | re.MULTILINE)


def find_tags(content: str) -> List[str]:
    """Every tag occurrence in ``content``, in order, duplicates included."""
    return [match.group(2).strip() for match in TAG_MATCH_REGEX.finditer(content)]


def extract_tags(content: str, ignored_tags: Iterable[str] = ()) -> Set[str]:
    """Distinct tags in ``content`` minus ``ignored_tags``.

    The synthetic ``all`` and ``untagged`` groups are never produced here;
    callers add them after filtering so they cannot be ignored.
    """
    ignored = set(ignored_tags)
    return {tag for tag in find_tags(content) if tag not in ignored}


def replace_tag(content: str, old_tag: str, new_tag: str) -> str:
    """Replace the first standalone occurrence of ``old_tag`` with ``new_tag``.

    Args:
        content: Note body.
        old_tag: Tag to replace, including the leading '#'.
        new_tag: Replacement tag, including the leading '#'.

    Returns:
        The updated body (unchanged if ``old_tag`` does not occur).

    Raises:
        TagError: If either tag does not start with '#'.
    """
    for tag in (old_tag, new_tag):
        if not tag.startswith(TAG_DELIMITER) or len(tag) < 2:
            raise TagError(f"Tag must start with '{TAG_DELIMITER}'", tag_name=tag)
    matcher = re.compile(rf"(^|\s)({re.escape(old_tag)})($|\s)", re.MULTILINE)
    return matcher.sub(lambda m: f"{m.group(1)}{new_tag}{m.group(3)}", content, count=1)
