"""
Undo Manager - bounded LIFO of patch groups.

Each committed edit pushes one group holding, per touched node, the
locator, the patch aspect and a pre-image that inverts the edit. Undoing a
group restores the pre-images and removes the matching stored patches so
reconciliation does not put the edit back.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, List, Optional
import logging

from pagepatch.layers.memory.patches import MARKER_PREFIX, PATCHED_ATTR, PENDING_ATTR, PatchKind, marker_attribute
from pagepatch.layers.memory.store import PatchStore
from pagepatch.layers.sense.document import Document
from pagepatch.layers.sense.locator import Locator
from pagepatch.layers.sense.resolver import LocatorResolver

logger = logging.getLogger(__name__)

STYLE_KINDS = (PatchKind.APPEND_STYLE, PatchKind.REPLACE_STYLE, PatchKind.HIDE)


@dataclass
class UndoEntry:
    """Pre-image of one node touched by an edit."""
    locator: Locator
    kind: PatchKind
    attribute_name: Optional[str]
    pre_image: Optional[str]
    node: Any = None
    parent: Any = None


@dataclass
class PatchGroup:
    """Entries produced by one committed edit; the unit of undo."""
    entries: List[UndoEntry] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass
class UndoResult:
    """Outcome of undoing one group."""
    restored: int = 0
    skipped: int = 0
    removed_patch_ids: List[str] = field(default_factory=list)


def capture_pre_image(
    document: Document,
    node: Any,
    locator: Locator,
    kind: PatchKind,
    attribute_name: Optional[str] = None,
) -> UndoEntry:
    """
    Record what is needed to invert an edit of node.

    Style kinds (hide included) keep the whole inline style string. Remove
    keeps the outer markup, shadow roots included, and the parent handle.
    """
    parent = None
    if kind is PatchKind.SET_TEXT:
        pre_image = document.text_content(node)
    elif kind is PatchKind.SET_HTML:
        pre_image = document.inner_html(node)
    elif kind is PatchKind.SET_ATTRIBUTE:
        pre_image = node.get(attribute_name) if attribute_name else None
    elif kind in STYLE_KINDS:
        pre_image = node.get("style") or ""
    elif kind is PatchKind.REMOVE:
        pre_image = document.outer_html(node, include_shadow=True)
        parent = node.getparent()
    else:
        pre_image = None

    return UndoEntry(
        locator=locator,
        kind=kind,
        attribute_name=attribute_name,
        pre_image=pre_image,
        node=node,
        parent=parent,
    )


class UndoManager:
    """
    Bounded undo stack.

    Example:
        >>> undo = UndoManager(document, resolver, store)
        >>> undo.push(PatchGroup([entry]))
        >>> undo.undo_last()
        UndoResult(restored=1, skipped=0, removed_patch_ids=[...])
    """

    CAPACITY = 20

    def __init__(
        self,
        document: Document,
        resolver: LocatorResolver,
        store: PatchStore,
        capacity: int = CAPACITY,
    ):
        self.document = document
        self.resolver = resolver
        self.store = store
        self.capacity = capacity
        self._groups: Deque[PatchGroup] = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._groups)

    @property
    def can_undo(self) -> bool:
        return bool(self._groups)

    def push(self, group: PatchGroup) -> None:
        """Push a group; beyond capacity the oldest group is dropped."""
        if not group.entries:
            return
        if len(self._groups) == self.capacity:
            logger.debug("[UndoManager] Capacity reached, dropping oldest group")
        self._groups.append(group)

    def clear(self) -> None:
        self._groups.clear()

    def undo_last(self) -> Optional[UndoResult]:
        """
        Invert the most recent group.

        Returns:
            UndoResult, or None when there is nothing to undo
        """
        if not self._groups:
            return None

        group = self._groups.pop()
        result = UndoResult()
        for entry in group.entries:
            # Drop the patch before restoring the pre-image
            removed = self.store.remove_matching(entry.locator, entry.kind, entry.attribute_name)
            result.removed_patch_ids.extend(p.id for p in removed)
            if self._restore(entry):
                result.restored += 1
            else:
                result.skipped += 1

        logger.info(f"[UndoManager] Undid {result.restored} change(s), skipped {result.skipped}")
        return result

    def _restore(self, entry: UndoEntry) -> bool:
        if entry.kind is PatchKind.REMOVE:
            return self._reinsert(entry)

        node = entry.node
        if node is None or not self.document.is_connected(node):
            node = self.resolver.resolve(entry.locator)
        if node is None:
            logger.debug(f"[UndoManager] Target gone: {entry.locator}")
            return False

        try:
            self._write_pre_image(node, entry)
        except (ValueError, TypeError) as e:
            logger.warning(f"[UndoManager] Could not restore {entry.locator}: {e}")
            return False
        self._clear_markers(node, entry)
        return True

    def _write_pre_image(self, node: Any, entry: UndoEntry) -> None:
        document = self.document
        if entry.kind is PatchKind.SET_TEXT:
            document.set_text(node, entry.pre_image)
        elif entry.kind is PatchKind.SET_HTML:
            document.set_html(node, entry.pre_image)
        elif entry.kind is PatchKind.SET_ATTRIBUTE:
            if not entry.attribute_name:
                return
            if entry.pre_image is None:
                document.remove_attribute(node, entry.attribute_name)
            else:
                document.set_attribute(node, entry.attribute_name, entry.pre_image)
        elif entry.kind in STYLE_KINDS:
            if entry.pre_image:
                document.set_attribute(node, "style", entry.pre_image)
            else:
                document.remove_attribute(node, "style")

    def _clear_markers(self, node: Any, entry: UndoEntry) -> None:
        self.document.remove_attribute(node, marker_attribute(entry.kind, entry.attribute_name))
        remaining = [
            name for name in node.attrib
            if name.startswith(MARKER_PREFIX) and name not in (PATCHED_ATTR, PENDING_ATTR)
        ]
        if not remaining:
            self.document.remove_attribute(node, PATCHED_ATTR)

    def _reinsert(self, entry: UndoEntry) -> bool:
        """Append the removed markup to its last-known parent (position is approximate)."""
        parent = entry.parent
        if parent is None or not self.document.is_connected(parent):
            logger.info("[UndoManager] Parent of removed node is gone; nothing reinserted")
            return False
        if entry.node is not None and self.document.is_connected(entry.node):
            return False
        self.document.append_html(parent, entry.pre_image or "")
        return True
