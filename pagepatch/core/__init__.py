"""Core module - Session, scope keys, errors and browser access."""

from pagepatch.core.errors import (
    AmbiguousLocator,
    ImportValidationError,
    MalformedPatchPayload,
    MutationApplicationFailure,
    PagePatchError,
    UnresolvedLocator,
)
from pagepatch.core.scope import Scope, make_scope_key

__all__ = [
    "AmbiguousLocator",
    "ImportValidationError",
    "MalformedPatchPayload",
    "MutationApplicationFailure",
    "PagePatchError",
    "Scope",
    "UnresolvedLocator",
    "make_scope_key",
]
