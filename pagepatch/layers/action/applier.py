"""
Patch Applier - idempotent application of stored patches.

Every outcome is an ApplyResult; nothing raised while applying a patch
escapes a reconciliation pass. A node already carrying the marker for a
patch's exact aspect and value is left alone, so re-running a pass over an
unchanged tree performs no writes and cannot feed the mutation loop.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import logging

from pagepatch.core.errors import MalformedPatchPayload, MutationApplicationFailure, UnresolvedLocator
from pagepatch.layers.memory.patches import PATCHED_ATTR, PENDING_ATTR, Patch, PatchKind, value_digest
from pagepatch.layers.memory.store import PatchStore
from pagepatch.layers.sense.document import RESERVED_ROOT_ID, Document, is_addressable
from pagepatch.layers.sense.locator import serialize
from pagepatch.layers.sense.resolver import LocatorResolver
from pagepatch.layers.sense.styles import InlineStyle, parse_declarations

logger = logging.getLogger(__name__)


class ApplyStatus(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ApplyResult:
    """Result of applying one patch."""
    status: ApplyStatus
    patch_id: str
    reason: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.status is ApplyStatus.APPLIED


@dataclass
class ApplyReport:
    """Summary of a reconciliation pass."""
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    results: List[ApplyResult] = field(default_factory=list)

    def add(self, result: ApplyResult) -> None:
        self.results.append(result)
        if result.status is ApplyStatus.APPLIED:
            self.applied += 1
        elif result.status is ApplyStatus.FAILED:
            self.failed += 1
        else:
            self.skipped += 1

    def merge(self, later: "ApplyReport") -> None:
        """
        Fold a later pass into this report.

        A patch applied in any pass stays applied; otherwise its latest
        outcome wins. Counts are recomputed from the merged results.
        """
        merged: Dict[str, ApplyResult] = {r.patch_id: r for r in self.results}
        for result in later.results:
            previous = merged.get(result.patch_id)
            if previous is None or not previous.applied:
                merged[result.patch_id] = result

        self.results = []
        self.applied = self.skipped = self.failed = 0
        for result in merged.values():
            self.add(result)

    @property
    def total(self) -> int:
        return len(self.results)


class PatchApplier:
    """
    Apply patches from a PatchStore to a Document.

    Example:
        >>> applier = PatchApplier(document, LocatorResolver(document), store)
        >>> report = applier.apply_all()
        >>> report.applied, report.skipped, report.failed
        (1, 0, 0)
    """

    def __init__(
        self,
        document: Document,
        resolver: LocatorResolver,
        store: PatchStore,
        reserved_root_id: str = RESERVED_ROOT_ID,
    ):
        self.document = document
        self.resolver = resolver
        self.store = store
        self.reserved_root_id = reserved_root_id
        self._node_cache: Dict[str, Any] = {}
        # patch id -> digest of the markup its Remove detached
        self._removed: Dict[str, str] = {}
        self._applying = False

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def apply_all(self, direct: bool = False) -> ApplyReport:
        """
        Apply every patch of the active scope in insertion order.

        A call made while a pass is in flight returns an empty report.
        """
        if self._applying:
            logger.debug("[PatchApplier] Pass already in flight, ignoring")
            return ApplyReport()

        self._applying = True
        report = ApplyReport()
        try:
            for patch in self.store:
                report.add(self.apply_one(patch, direct=direct))
        finally:
            self._applying = False

        if report.applied or report.failed:
            logger.info(
                f"[PatchApplier] Pass: {report.applied} applied, "
                f"{report.skipped} skipped, {report.failed} failed"
            )
        return report

    def apply_one(self, patch: Patch, direct: bool = False) -> ApplyResult:
        """
        Apply a single patch.

        Args:
            patch: Patch to apply
            direct: True for an operator's commit (Hide also zeroes opacity)

        Returns:
            ApplyResult with status applied, skipped or failed
        """
        try:
            node = self._locate(patch)
        except UnresolvedLocator as e:
            return ApplyResult(ApplyStatus.SKIPPED, patch.id, str(e))
        return self.apply_to(node, patch, direct=direct)

    def apply_to(self, node: Any, patch: Patch, direct: bool = False) -> ApplyResult:
        """
        Apply patch to an already-known node, bypassing resolution.

        Used on commit, where the operator's node is authoritative even if
        its locator cannot reach it (closed shadow roots).
        """
        if not is_addressable(self.document, node, self.reserved_root_id):
            return ApplyResult(ApplyStatus.SKIPPED, patch.id, "Target is not addressable")

        try:
            declarations = self._validate(patch)
        except MalformedPatchPayload as e:
            logger.debug(f"[PatchApplier] Malformed patch {patch.id}: {e}")
            return ApplyResult(ApplyStatus.SKIPPED, patch.id, str(e))

        try:
            if patch.kind is PatchKind.REMOVE:
                return self._remove(patch, node)

            if self.is_current(node, patch):
                return ApplyResult(ApplyStatus.SKIPPED, patch.id, "Already applied")

            self._mutate(node, patch, declarations, direct)
            self._stamp(node, patch)
        except MutationApplicationFailure as e:
            logger.warning(f"[PatchApplier] Patch {patch.id} failed: {e}")
            return ApplyResult(ApplyStatus.FAILED, patch.id, str(e))

        self._node_cache[serialize(patch.locator)] = node
        return ApplyResult(ApplyStatus.APPLIED, patch.id)

    def forget(self, patch_ids: Iterable[str]) -> None:
        """Drop per-patch bookkeeping for deleted patches."""
        for patch_id in patch_ids:
            self._removed.pop(patch_id, None)

    def reset(self) -> None:
        """Clear cached nodes and removal fingerprints (scope switch)."""
        self._node_cache.clear()
        self._removed.clear()

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _locate(self, patch: Patch) -> Any:
        key = serialize(patch.locator)
        node = self._node_cache.get(key)
        if node is not None and self.document.is_connected(node):
            return node
        self._node_cache.pop(key, None)
        node = self.resolver.resolve_unique(patch.locator)
        self._node_cache[key] = node
        return node

    def _validate(self, patch: Patch) -> list:
        """Check required fields. Returns parsed declarations for style kinds."""
        if patch.kind is PatchKind.SET_ATTRIBUTE and not patch.attribute_name:
            raise MalformedPatchPayload("Attribute patch without an attribute name")
        if patch.kind in (PatchKind.APPEND_STYLE, PatchKind.REPLACE_STYLE):
            declarations = parse_declarations(patch.value)
            # An empty replace clears inline style; anything else needs a valid declaration
            if not declarations and (patch.kind is PatchKind.APPEND_STYLE or patch.value.strip()):
                raise MalformedPatchPayload(f"No valid style declaration in {patch.value!r}")
            return declarations
        return []

    def is_current(self, node: Any, patch: Patch) -> bool:
        """True if node carries this patch's marker and still shows its effect."""
        if node.get(patch.marker) != value_digest(patch.value):
            return False

        kind = patch.kind
        if kind is PatchKind.SET_TEXT:
            return self.document.text_content(node) == patch.value
        if kind is PatchKind.SET_HTML:
            return self.document.inner_html(node) == self.document.normalize_markup(patch.value)
        if kind is PatchKind.SET_ATTRIBUTE:
            if not patch.value:
                return patch.attribute_name not in node.attrib
            return node.get(patch.attribute_name) == patch.value
        if kind in (PatchKind.APPEND_STYLE, PatchKind.REPLACE_STYLE):
            style = InlineStyle.parse(node.get("style"))
            declarations = dict(parse_declarations(patch.value))
            if kind is PatchKind.REPLACE_STYLE and len(style) != len(declarations):
                return False
            return all(
                style.get(name) == value and style.is_important(name)
                for name, value in declarations.items()
            )
        if kind is PatchKind.HIDE:
            style = InlineStyle.parse(node.get("style"))
            return style.get("display") == "none" and style.get("visibility") == "hidden"
        return True

    def _mutate(self, node: Any, patch: Patch, declarations: list, direct: bool) -> None:
        document = self.document
        try:
            if patch.kind is PatchKind.SET_TEXT:
                document.set_text(node, patch.value)
            elif patch.kind is PatchKind.SET_HTML:
                document.set_html(node, patch.value)
            elif patch.kind is PatchKind.SET_ATTRIBUTE:
                if patch.value:
                    document.set_attribute(node, patch.attribute_name, patch.value)
                else:
                    document.remove_attribute(node, patch.attribute_name)
            elif patch.kind is PatchKind.APPEND_STYLE:
                style = InlineStyle.parse(node.get("style"))
                for name, value in declarations:
                    style.set_property(name, value, important=True)
                self._write_style(node, style)
            elif patch.kind is PatchKind.REPLACE_STYLE:
                style = InlineStyle()
                for name, value in declarations:
                    style.set_property(name, value, important=True)
                self._write_style(node, style)
            elif patch.kind is PatchKind.HIDE:
                style = InlineStyle.parse(node.get("style"))
                style.set_property("display", "none", important=True)
                style.set_property("visibility", "hidden", important=True)
                if direct:
                    style.set_property("opacity", "0", important=True)
                self._write_style(node, style)
        except Exception as e:
            raise MutationApplicationFailure(f"{patch.kind.value} on <{node.tag}> failed: {e}") from e

    def _write_style(self, node: Any, style: InlineStyle) -> None:
        if len(style):
            self.document.set_attribute(node, "style", style.to_css())
        else:
            self.document.remove_attribute(node, "style")

    def _stamp(self, node: Any, patch: Patch) -> None:
        try:
            self.document.set_attribute(node, patch.marker, value_digest(patch.value))
            self.document.set_attribute(node, PATCHED_ATTR, "1")
            self.document.remove_attribute(node, PENDING_ATTR)
        except ValueError as e:
            raise MutationApplicationFailure(f"Could not mark <{node.tag}>: {e}") from e

    def _remove(self, patch: Patch, node: Any) -> ApplyResult:
        """
        Detach node. After the first removal only a node with the same
        markup is removed again, so a positional locator cannot cascade
        onto the next sibling.
        """
        fingerprint = value_digest(self.document.outer_html(node))
        expected = self._removed.get(patch.id)
        if expected is not None and expected != fingerprint:
            return ApplyResult(ApplyStatus.SKIPPED, patch.id, "Target differs from the removed node")
        try:
            self.document.detach(node)
        except ValueError as e:
            raise MutationApplicationFailure(f"remove on <{node.tag}> failed: {e}") from e
        self._removed[patch.id] = fingerprint
        self._node_cache.pop(serialize(patch.locator), None)
        return ApplyResult(ApplyStatus.APPLIED, patch.id)
