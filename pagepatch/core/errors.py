"""
Error types for the patch engine.

None of these abort a reconciliation pass. The applier converts them into
ApplyResult values; only ImportValidationError reaches the caller.
"""

from typing import Any, Optional


class PagePatchError(Exception):
    """Base class for all pagepatch errors."""


class UnresolvedLocator(PagePatchError):
    """The locator matched nothing (target vanished or tree reshaped)."""

    def __init__(self, locator: Any, message: Optional[str] = None):
        self.locator = locator
        super().__init__(message or f"Locator did not resolve: {locator}")


class AmbiguousLocator(UnresolvedLocator):
    """The locator matched more than one node."""

    def __init__(self, locator: Any, count: int):
        self.count = count
        super().__init__(locator, f"Locator matched {count} nodes: {locator}")


class MalformedPatchPayload(PagePatchError):
    """A stored patch is missing a field its kind requires."""


class ImportValidationError(PagePatchError):
    """An import payload failed shape validation."""


class MutationApplicationFailure(PagePatchError):
    """A tree mutation raised while a patch was being applied."""
