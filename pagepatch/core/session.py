"""
Patch Session - the explicit context object.

Owns the active scope, the patch store and every engine component for one
document. Nothing in the engine reads ambient state; everything goes
through a session.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Union
import asyncio
import logging

from pagepatch.core.errors import MalformedPatchPayload
from pagepatch.core.scope import STORAGE_PREFIX, Scope, make_scope_key
from pagepatch.layers.action.applier import ApplyReport, ApplyStatus, PatchApplier
from pagepatch.layers.action.reconciler import MutationFeed, Reconciler
from pagepatch.layers.memory.patches import Patch, PatchKind
from pagepatch.layers.memory.persistence import DebouncedWriter, MemoryStorage, StorageBackend
from pagepatch.layers.memory.store import PatchStore, parse_import
from pagepatch.layers.memory.undo import PatchGroup, UndoManager, UndoResult, capture_pre_image
from pagepatch.layers.sense.document import DEFAULT_MAX_DEPTH, RESERVED_ROOT_ID, Document, is_addressable
from pagepatch.layers.sense.locator import Locator
from pagepatch.layers.sense.resolver import LocatorResolver
from pagepatch.layers.sense.synthesizer import LocatorSynthesizer

logger = logging.getLogger(__name__)


@dataclass
class SessionConfig:
    """Configuration for a patch session."""
    scope: str = "full"  # full, path, origin
    min_interval: float = 0.1  # Seconds between reconciliation passes
    frame_interval: float = 1 / 60
    persist_delay: float = 0.3  # Quiet period before a write
    boot_retries: int = 5
    boot_retry_interval: float = 0.2
    undo_capacity: int = 20
    max_shadow_depth: int = DEFAULT_MAX_DEPTH
    max_climb_depth: int = 8
    storage_prefix: str = STORAGE_PREFIX
    reserved_root_id: str = RESERVED_ROOT_ID


@dataclass
class CommitResult:
    """Result of committing one edit to a set of nodes."""
    kind: PatchKind
    applied: int = 0
    failed: int = 0
    patches: List[Patch] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.applied > 0


class PatchSession:
    """
    Edit, persist and reconcile patches for one document.

    Example:
        >>> session = PatchSession(Document.from_html(html, address="https://shop.example/item"))
        >>> session.activate()
        >>> price = session.document.get_element_by_id("price")
        >>> session.commit([price], PatchKind.SET_TEXT, "$12")
        >>> session.undo_last()
    """

    def __init__(
        self,
        document: Document,
        storage: Optional[StorageBackend] = None,
        config: Optional[SessionConfig] = None,
    ):
        """
        Args:
            document: Tree to edit
            storage: Key-value persistence (in-memory by default)
            config: Session configuration
        """
        self.document = document
        self.storage = storage if storage is not None else MemoryStorage()
        self.config = config or SessionConfig()

        scope = Scope.parse(self.config.scope)
        self.store = PatchStore(
            scope,
            make_scope_key(document.address, scope),
            prefix=self.config.storage_prefix,
        )
        self.synthesizer = LocatorSynthesizer(
            document,
            max_climb_depth=self.config.max_climb_depth,
            max_shadow_depth=self.config.max_shadow_depth,
        )
        self.resolver = LocatorResolver(document, max_shadow_depth=self.config.max_shadow_depth)
        self.applier = PatchApplier(document, self.resolver, self.store, self.config.reserved_root_id)
        self.undo = UndoManager(document, self.resolver, self.store, capacity=self.config.undo_capacity)
        self.writer = DebouncedWriter(self._persist, delay=self.config.persist_delay)
        self.reconciler = Reconciler(
            self.applier.apply_all,
            min_interval=self.config.min_interval,
            frame_interval=self.config.frame_interval,
        )
        self.feed = MutationFeed(document, self.reconciler.request, self.config.reserved_root_id)
        self.active = False

    @property
    def scope(self) -> Scope:
        return self.store.scope

    @property
    def scope_key(self) -> str:
        return self.store.scope_key

    @property
    def patches(self) -> List[Patch]:
        return self.store.patches

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self) -> int:
        """Load the active scope's patches. Returns how many were loaded."""
        count = self.store.load(self.storage, self.store.scope, self.store.scope_key)
        self.active = True
        return count

    async def boot(self) -> ApplyReport:
        """
        Apply, retry a few times for late-rendering content, then hand over
        to the mutation-driven loop. The retry sequence always completes.
        """
        if not self.active:
            self.activate()

        report = self.apply_all()
        if len(self.store):
            for attempt in range(self.config.boot_retries):
                await asyncio.sleep(self.config.boot_retry_interval)
                retry = self.apply_all()
                logger.debug(f"[PatchSession] Boot retry {attempt + 1}: {retry.applied} applied")
                report.merge(retry)
        self.feed.start()
        logger.info(f"[PatchSession] Booted {self.scope_key}: {len(self.store)} patch(es)")
        return report

    def deactivate(self) -> None:
        """Stop observing and write any pending change."""
        self.feed.stop()
        self.reconciler.cancel()
        self.writer.flush()
        self.active = False

    def set_scope(self, scope: Union[str, Scope]) -> ApplyReport:
        """Switch granularity; the new scope's patch set replaces the current one."""
        scope = Scope.parse(scope)
        self.writer.flush()
        self.store.load(self.storage, scope, make_scope_key(self.document.address, scope))
        self.applier.reset()
        self.undo.clear()
        self.synthesizer.clear_cache()
        return self.apply_all()

    # ------------------------------------------------------------------
    # Locators
    # ------------------------------------------------------------------

    def synthesize(self, node: Any) -> Locator:
        return self.synthesizer.synthesize(node)

    def resolve(self, locator: Any) -> Optional[Any]:
        return self.resolver.resolve(locator)

    def resolve_all(self, locator: Any) -> List[Any]:
        return self.resolver.resolve_all(locator)

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------

    def commit(
        self,
        nodes: Iterable[Any],
        kind: Union[str, PatchKind],
        value: Optional[str] = "",
        attribute_name: Optional[str] = None,
    ) -> CommitResult:
        """
        Apply an edit to nodes now and persist it as patches.

        Pushes one undo group for the whole edit.

        Raises:
            MalformedPatchPayload: Attribute edit without an attribute name
        """
        kind = PatchKind.parse(kind)
        if kind is PatchKind.SET_ATTRIBUTE and not attribute_name:
            raise MalformedPatchPayload("Attribute edits need an attribute name")

        targets = []
        for node in nodes:
            if any(node is seen for seen in targets):
                continue
            if not is_addressable(self.document, node, self.config.reserved_root_id):
                logger.debug(f"[PatchSession] Ignoring non-addressable node {node!r}")
                continue
            if not self.document.is_connected(node):
                logger.debug(f"[PatchSession] Ignoring detached node {node!r}")
                continue
            targets.append(node)

        # Fresh locators, all taken before anything is mutated
        self.synthesizer.clear_cache()
        located = [(node, self.synthesizer.synthesize(node)) for node in targets]

        result = CommitResult(kind=kind)
        group = PatchGroup()
        for node, locator in located:
            group.entries.append(capture_pre_image(self.document, node, locator, kind, attribute_name))
            patch = self.store.upsert(Patch(locator, kind, value or "", attribute_name))
            outcome = self.applier.apply_to(node, patch, direct=True)
            if outcome.applied or (
                outcome.status is ApplyStatus.SKIPPED
                and kind is not PatchKind.REMOVE
                and self.applier.is_current(node, patch)
            ):
                result.applied += 1
            elif outcome.status is ApplyStatus.FAILED:
                result.failed += 1
                result.errors.append(outcome.reason or "")
            else:
                result.errors.append(outcome.reason or "")
            result.patches.append(patch)

        self.undo.push(group)
        if result.patches:
            self.writer.request()
        logger.info(f"[PatchSession] {kind.label} applied to {result.applied} element(s)")
        return result

    def undo_last(self) -> Optional[UndoResult]:
        result = self.undo.undo_last()
        if result is None:
            return None
        self.applier.forget(result.removed_patch_ids)
        self.synthesizer.clear_cache()
        self.writer.request()
        return result

    def apply_all(self, direct: bool = False) -> ApplyReport:
        return self.applier.apply_all(direct=direct)

    def delete_patch(self, patch_id: str) -> bool:
        removed = self.store.remove(patch_id)
        if removed:
            self.applier.forget([patch_id])
            self.writer.request()
        return removed

    def clear_patches(self) -> int:
        """Forget every patch of the active scope, in memory and in storage."""
        count = len(self.store)
        self.writer.cancel()
        self.store.clear()
        self.applier.reset()
        self.storage.remove(self.store.storage_key)
        return count

    # ------------------------------------------------------------------
    # Import / export
    # ------------------------------------------------------------------

    def export_patches(self) -> dict:
        return self.store.export()

    def import_patches(self, payload: Union[str, bytes, Mapping[str, Any]]) -> ApplyReport:
        """
        Replace the active scope's patches with an import payload.

        Raises:
            ImportValidationError: The payload is malformed; the store is untouched
        """
        patches = parse_import(payload)
        self.store.replace_all(patches)
        self.applier.reset()
        self.writer.request()
        logger.info(f"[PatchSession] Imported {len(self.store)} patch(es) into {self.scope_key}")
        return self.apply_all()

    def _persist(self) -> None:
        self.storage.set(self.store.storage_key, self.store.snapshot())
