"""Tag groups and the user-editable tag hierarchy.

Tag membership comes from note content. The hierarchy is a separate
``parent -> [children]`` mapping edited by the user; it may reference tags
that no note carries and it may contain cycles. Every traversal over it
carries a ``seen`` set.
"""
import copy
import logging
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from connected_notes.config import TagRecencyMode
from connected_notes.models.schema import (
    ALL_NOTES_TAG_NAME,
    ROOT_TAG_NAME,
    UNTAGGED_NOTES_TAG_NAME,
    Note,
    ParentTagToChildTags,
    SortDirection,
    TagGroup,
)
from connected_notes.observability import timed_operation
from connected_notes.reactive import Signal
from connected_notes.services.tag_extractor import find_tags

logger = logging.getLogger(__name__)

# Value contributed by a tag with no notes, or by a tag already visited
_NEUTRAL_TIMESTAMP = {
    TagRecencyMode.NEWEST: 0,
    TagRecencyMode.OLDEST: 10**15,
}


def _fold(mode: TagRecencyMode, a: int, b: int) -> int:
    return max(a, b) if mode == TagRecencyMode.NEWEST else min(a, b)


def get_newest_note_change_timestamp(
    tag: str,
    tag_to_note_ids: Mapping[str, Iterable[str]],
    note_timestamps: Mapping[str, int],
    hierarchy: ParentTagToChildTags,
    mode: TagRecencyMode = TagRecencyMode.NEWEST,
    seen: Optional[Set[str]] = None,
) -> int:
    """Fold the change times of a tag's notes and all its descendant tags.

    Depth-first over ``hierarchy``. A tag reached a second time (through a
    cycle or a shared descendant) contributes the neutral value instead of
    being expanded again.

    Args:
        tag: Tag to compute.
        tag_to_note_ids: Direct note membership per tag.
        note_timestamps: ``last_changed_epoch_millis`` per note ID.
        hierarchy: Explicit parent -> children mapping.
        mode: NEWEST takes the maximum, OLDEST the minimum.
        seen: Tags already visited in this traversal.

    Returns:
        The folded timestamp, or the neutral value when nothing contributes.
    """
    if seen is None:
        seen = set()
    neutral = _NEUTRAL_TIMESTAMP[mode]
    if tag in seen:
        return neutral
    seen.add(tag)

    result = neutral
    for note_id in tag_to_note_ids.get(tag, ()):
        result = _fold(mode, result, note_timestamps.get(note_id, neutral))
    for child_tag in hierarchy.get(tag, []):
        child_value = get_newest_note_change_timestamp(
            child_tag, tag_to_note_ids, note_timestamps, hierarchy, mode, seen
        )
        result = _fold(mode, result, child_value)
    return result


def extract_tag_groups(
    notes: Sequence[Note],
    ignored_tags: Iterable[str],
    hierarchy: ParentTagToChildTags,
    mode: TagRecencyMode = TagRecencyMode.NEWEST,
) -> List[TagGroup]:
    """Group notes by tag.

    Ignored tags are dropped first. A note left without tags joins
    ``untagged``; every note joins ``all``. Groups are ordered by first
    appearance.
    """
    ignored = set(ignored_tags)
    tag_to_note_ids: Dict[str, Dict[str, None]] = {}
    for note in notes:
        tags = [tag for tag in dict.fromkeys(find_tags(note.content)) if tag not in ignored]
        if not tags:
            tags = [UNTAGGED_NOTES_TAG_NAME]
        tags.append(ALL_NOTES_TAG_NAME)
        for tag in tags:
            tag_to_note_ids.setdefault(tag, {})[note.id] = None

    note_timestamps = {note.id: note.last_changed_epoch_millis for note in notes}
    return [
        TagGroup(
            tag=tag,
            note_ids=list(note_ids),
            newest_note_change_timestamp=get_newest_note_change_timestamp(
                tag, tag_to_note_ids, note_timestamps, hierarchy, mode
            ),
        )
        for tag, note_ids in tag_to_note_ids.items()
    ]


def get_root_tags(all_tags: Sequence[str], hierarchy: ParentTagToChildTags) -> List[str]:
    """Tags shown at the top level.

    A tag is a root tag if no parent lists it, or if the ROOT pseudo-tag
    lists it explicitly (even when another parent lists it too).
    """
    explicit_root = set(hierarchy.get(ROOT_TAG_NAME, []))
    with_parent = {child for children in hierarchy.values() for child in children}
    not_on_root_level = with_parent - explicit_root
    return [tag for tag in all_tags if tag not in not_on_root_level]


def change_parent_tag(
    hierarchy: ParentTagToChildTags,
    old_parent_tag: Optional[str],
    new_parent_tag: str,
    child_tag: str,
) -> ParentTagToChildTags:
    """Move ``child_tag`` from ``old_parent_tag`` to ``new_parent_tag``.

    Idempotent: the child is added only if missing and removed only if
    present. Returns a new mapping; ``hierarchy`` is not modified.
    """
    result = copy.deepcopy(dict(hierarchy))
    children = result.setdefault(new_parent_tag, [])
    if child_tag not in children:
        children.append(child_tag)
    if (
        old_parent_tag is not None
        and old_parent_tag != new_parent_tag
        and child_tag in result.get(old_parent_tag, [])
    ):
        result[old_parent_tag].remove(child_tag)
    return result


def update_parent_tags(
    hierarchy: ParentTagToChildTags,
    child_tag: str,
    parent_tags: Sequence[str],
) -> ParentTagToChildTags:
    """Replace every parent of ``child_tag`` with ``parent_tags``.

    With an empty ``parent_tags`` the child ends up in no list at all, which
    makes it an implicit root tag. Returns a new mapping.
    """
    result: ParentTagToChildTags = {
        parent: [child for child in children if child != child_tag]
        for parent, children in hierarchy.items()
    }
    for parent_tag in dict.fromkeys(parent_tags):
        result.setdefault(parent_tag, []).append(child_tag)
    return result


def sort_tags(
    tags: Sequence[str],
    direction: SortDirection,
    get_tag_group: Callable[[str], Optional[TagGroup]],
) -> List[str]:
    """Order tags for display. Unknown tags sort as if never changed."""

    def timestamp(tag: str) -> int:
        group = get_tag_group(tag)
        return group.newest_note_change_timestamp if group else 0

    if direction == SortDirection.MODIFIED_NEWEST_FIRST:
        return sorted(tags, key=timestamp, reverse=True)
    if direction == SortDirection.MODIFIED_OLDEST_FIRST:
        return sorted(tags, key=timestamp)
    if direction == SortDirection.ALPHABETICAL:
        return sorted(tags, key=str.casefold)
    return sorted(tags, key=str.casefold, reverse=True)


def sort_notes(
    note_ids: Sequence[str],
    direction: SortDirection,
    get_note: Callable[[str], Optional[Note]],
) -> List[str]:
    """Order note IDs for display. IDs that no longer resolve are dropped."""
    notes = [note for note in (get_note(note_id) for note_id in note_ids) if note]
    if direction == SortDirection.MODIFIED_NEWEST_FIRST:
        notes.sort(key=lambda n: n.last_changed_epoch_millis, reverse=True)
    elif direction == SortDirection.MODIFIED_OLDEST_FIRST:
        notes.sort(key=lambda n: n.last_changed_epoch_millis)
    elif direction == SortDirection.ALPHABETICAL:
        notes.sort(key=lambda n: n.title.casefold())
    else:
        notes.sort(key=lambda n: n.title.casefold(), reverse=True)
    return [note.id for note in notes]


class TagHierarchyIndex:
    """Derived tag groups for the current notes, settings and hierarchy."""

    def __init__(self, mode: TagRecencyMode = TagRecencyMode.NEWEST):
        self.mode = mode
        self.tag_groups: Signal[List[TagGroup]] = Signal([], name="tag_groups")
        self._tag_to_tag_group: Dict[str, TagGroup] = {}
        self._hierarchy: ParentTagToChildTags = {}

    def rebuild(
        self,
        notes: Sequence[Note],
        ignored_tags: Iterable[str],
        hierarchy: ParentTagToChildTags,
    ) -> List[TagGroup]:
        """Recompute all tag groups and publish them on ``tag_groups``."""
        with timed_operation("rebuild_tag_groups", notes=len(notes)) as op:
            groups = extract_tag_groups(notes, ignored_tags, hierarchy, self.mode)
            op["group_count"] = len(groups)

        self._tag_to_tag_group = {group.tag: group for group in groups}
        self._hierarchy = copy.deepcopy(dict(hierarchy))
        self.tag_groups.next(groups)
        return groups

    @property
    def hierarchy(self) -> ParentTagToChildTags:
        return copy.deepcopy(self._hierarchy)

    @property
    def tags(self) -> List[str]:
        return list(self._tag_to_tag_group)

    def get_tag_group_for_tag(self, tag: str) -> Optional[TagGroup]:
        return self._tag_to_tag_group.get(tag)

    def get_child_tags(self, tag: str) -> List[str]:
        return list(self._hierarchy.get(tag, []))

    def root_tags(self) -> List[str]:
        return get_root_tags(self.tags, self._hierarchy)
