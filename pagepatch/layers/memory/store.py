"""
Patch Store - scoped, keyed collection of desired mutations.

Holds the active scope's patches in insertion order. Persisted form:

    {"savedAt": ..., "scope": "full", "scopeKey": ..., "patches": [...]}
"""

from typing import Any, Dict, Iterator, List, Mapping, Optional, Union
import json
import logging

from pagepatch.core.errors import ImportValidationError, MalformedPatchPayload
from pagepatch.core.scope import STORAGE_PREFIX, Scope, storage_key
from pagepatch.layers.memory.patches import Patch, PatchKind, now_iso, patch_key
from pagepatch.layers.sense.locator import parse_locator

logger = logging.getLogger(__name__)


class PatchStore:
    """
    Active scope's patches with upsert-by-key semantics.

    Example:
        >>> store = PatchStore(Scope.FULL, "https://shop.example/item")
        >>> patch = store.upsert(Patch(CssLocator("#price"), PatchKind.SET_TEXT, "$12"))
        >>> len(store)
        1
    """

    def __init__(self, scope: Union[str, Scope] = Scope.FULL, scope_key: str = "", prefix: str = STORAGE_PREFIX):
        self.scope = Scope.parse(scope)
        self.scope_key = scope_key
        self.prefix = prefix
        self._patches: List[Patch] = []

    def __iter__(self) -> Iterator[Patch]:
        return iter(list(self._patches))

    def __len__(self) -> int:
        return len(self._patches)

    @property
    def patches(self) -> List[Patch]:
        return list(self._patches)

    @property
    def storage_key(self) -> str:
        return storage_key(self.scope_key, self.prefix)

    def find(self, patch_id: str) -> Optional[Patch]:
        for patch in self._patches:
            if patch.id == patch_id:
                return patch
        return None

    def upsert(self, patch: Patch) -> Patch:
        """
        Insert patch, or replace the entry with the same key.

        A replaced entry keeps its id and its position.

        Returns:
            The stored patch
        """
        key = patch.key
        for index, existing in enumerate(self._patches):
            if existing.key == key:
                patch.id = existing.id
                self._patches[index] = patch
                logger.debug(f"[PatchStore] Updated {patch}")
                return patch
        self._patches.append(patch)
        logger.debug(f"[PatchStore] Added {patch}")
        return patch

    def remove(self, patch_id: str) -> bool:
        before = len(self._patches)
        self._patches = [p for p in self._patches if p.id != patch_id]
        return len(self._patches) != before

    def remove_matching(self, locator: Any, kind: PatchKind, attribute_name: Optional[str] = None) -> List[Patch]:
        """Remove patches with this (locator, kind, attribute name). Returns the removed ones."""
        key = patch_key(parse_locator(locator), kind, attribute_name)
        removed = [p for p in self._patches if p.key == key]
        if removed:
            self._patches = [p for p in self._patches if p.key != key]
        return removed

    def replace_all(self, patches: List[Patch]) -> None:
        self._patches = []
        for patch in patches:
            self.upsert(patch)

    def clear(self) -> None:
        self._patches = []

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self, storage: Any, scope: Union[str, Scope], scope_key: str) -> int:
        """
        Swap in the persisted patch set of another scope.

        Unparseable entries are logged and skipped.

        Returns:
            Number of patches loaded
        """
        self.scope = Scope.parse(scope)
        self.scope_key = scope_key
        self._patches = []

        pack = storage.get(self.storage_key)
        entries = pack.get("patches") if isinstance(pack, Mapping) else None
        if not isinstance(entries, list):
            entries = []

        for index, entry in enumerate(entries):
            try:
                self._patches.append(Patch.from_dict(entry))
            except MalformedPatchPayload as e:
                logger.warning(f"[PatchStore] Skipping stored patch {index}: {e}")

        logger.info(f"[PatchStore] Loaded {len(self._patches)} patch(es) for {self.scope_key or '<blank>'}")
        return len(self._patches)

    def snapshot(self) -> Dict[str, Any]:
        """The value persisted under storage_key."""
        return {
            "savedAt": now_iso(),
            "scope": self.scope.value,
            "scopeKey": self.scope_key,
            "patches": [p.to_dict() for p in self._patches],
        }

    def export(self) -> Dict[str, Any]:
        return {
            "scope": self.scope.value,
            "scopeKey": self.scope_key,
            "exportedAt": now_iso(),
            "patches": [p.to_dict() for p in self._patches],
        }


def parse_import(payload: Union[str, bytes, Mapping[str, Any]]) -> List[Patch]:
    """
    Validate an import payload.

    Args:
        payload: JSON text or an already-decoded mapping

    Returns:
        The patches to install

    Raises:
        ImportValidationError: If the payload or any entry is malformed
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ImportValidationError(f"Import is not valid JSON: {e}") from e

    if not isinstance(payload, Mapping):
        raise ImportValidationError("Import must be a JSON object")

    entries = payload.get("patches")
    if not isinstance(entries, list):
        raise ImportValidationError("Import field 'patches' must be a list")

    patches = []
    for index, entry in enumerate(entries):
        try:
            patches.append(Patch.from_dict(entry))
        except MalformedPatchPayload as e:
            raise ImportValidationError(f"Patch {index} is invalid: {e}") from e
    return patches
