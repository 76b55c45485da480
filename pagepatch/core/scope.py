"""
Scope keys - partition patches by page address.

An address maps to a key at one of three granularities:

    full    https://shop.example/item?id=4  -> origin + path + query
    path    https://shop.example/item       -> origin + path
    origin  https://shop.example            -> origin
"""

from enum import Enum
from typing import Union
from urllib.parse import urlsplit


STORAGE_PREFIX = "pagepatch::patches::"


class Scope(str, Enum):
    """Granularity at which patches are stored."""
    FULL = "full"
    PATH = "path"
    ORIGIN = "origin"

    @classmethod
    def parse(cls, value: Union[str, "Scope"]) -> "Scope":
        if isinstance(value, Scope):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown scope '{value}' (expected one of: full, path, origin)"
            ) from None


def make_scope_key(address: str, scope: Union[str, Scope] = Scope.FULL) -> str:
    """
    Derive the scope key for a page address.

    Args:
        address: Absolute page address (URL)
        scope: Granularity ("full", "path" or "origin")

    Returns:
        The scope key string
    """
    scope = Scope.parse(scope)
    parts = urlsplit(address or "")
    origin = f"{parts.scheme}://{parts.netloc}" if parts.scheme else ""
    if scope is Scope.ORIGIN:
        return origin
    path = parts.path or "/"
    if scope is Scope.PATH:
        return origin + path
    search = f"?{parts.query}" if parts.query else ""
    return origin + path + search


def storage_key(scope_key: str, prefix: str = STORAGE_PREFIX) -> str:
    """Key under which a scope's patch set is persisted."""
    return prefix + scope_key
