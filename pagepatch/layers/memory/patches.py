"""
Patch model.

A patch is one desired, persisted mutation of a located node. Patches are
keyed by (locator, kind, attribute name); the store keeps at most one
patch per key.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
import hashlib
import re
import uuid

from pagepatch.core.errors import MalformedPatchPayload
from pagepatch.layers.sense.locator import Locator, parse_locator, serialize


# Node markers written by the applier
MARKER_PREFIX = "data-pagepatch-"
PATCHED_ATTR = MARKER_PREFIX + "patched"
PENDING_ATTR = MARKER_PREFIX + "pending"


class PatchKind(str, Enum):
    """Aspect of a node a patch controls."""
    SET_TEXT = "text"
    SET_HTML = "html"
    SET_ATTRIBUTE = "attr"
    APPEND_STYLE = "style_append"
    REPLACE_STYLE = "style_replace"
    HIDE = "hide"
    REMOVE = "remove"

    @classmethod
    def parse(cls, value: Any) -> "PatchKind":
        if isinstance(value, PatchKind):
            return value
        text = str(value or "").strip().lower()
        text = _KIND_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            raise MalformedPatchPayload(f"Unknown patch kind: {value!r}") from None

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_ALIASES = {
    "settext": "text",
    "sethtml": "html",
    "setattribute": "attr",
    "appendstyle": "style_append",
    "replacestyle": "style_replace",
}

_KIND_LABELS = {
    PatchKind.SET_TEXT: "Text",
    PatchKind.SET_HTML: "HTML",
    PatchKind.SET_ATTRIBUTE: "Attribute",
    PatchKind.APPEND_STYLE: "Style (Append)",
    PatchKind.REPLACE_STYLE: "Style (Replace)",
    PatchKind.HIDE: "Hide",
    PatchKind.REMOVE: "Remove",
}


def new_patch_id() -> str:
    return str(uuid.uuid4())


def now_iso() -> str:
    """Current UTC time as ISO-8601 with milliseconds and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def value_digest(value: Optional[str]) -> str:
    """Short, stable digest of a patch value, stored in node markers."""
    return hashlib.sha1(str(value or "").encode("utf-8")).hexdigest()[:16]


def marker_attribute(kind: PatchKind, attribute_name: Optional[str] = None) -> str:
    """Name of the per-aspect marker attribute, e.g. data-pagepatch-attr-title."""
    name = MARKER_PREFIX + kind.value.replace("_", "-")
    if kind is PatchKind.SET_ATTRIBUTE and attribute_name:
        name += "-" + re.sub(r"[^a-z0-9-]", "-", attribute_name.lower())
    return name


def patch_key(locator: Locator, kind: PatchKind, attribute_name: Optional[str] = None) -> Tuple[str, str, str]:
    return (serialize(locator), kind.value, attribute_name or "")


@dataclass
class Patch:
    """One desired mutation."""
    locator: Locator
    kind: PatchKind
    value: str = ""
    attribute_name: Optional[str] = None
    id: str = field(default_factory=new_patch_id)
    created_at: str = field(default_factory=now_iso)

    @property
    def key(self) -> Tuple[str, str, str]:
        return patch_key(self.locator, self.kind, self.attribute_name)

    @property
    def marker(self) -> str:
        return marker_attribute(self.kind, self.attribute_name)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "locator": self.locator.to_dict(),
            "kind": self.kind.value,
            "value": self.value,
            "createdAt": self.created_at,
        }
        if self.attribute_name:
            data["attributeName"] = self.attribute_name
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Patch":
        """
        Build a patch from its stored form.

        Older entries use selector/type/name instead of
        locator/kind/attributeName; both are accepted.

        Raises:
            MalformedPatchPayload: If the entry has no usable locator or kind
        """
        if not isinstance(data, Mapping):
            raise MalformedPatchPayload(f"Patch entry must be an object, got {type(data).__name__}")

        locator = parse_locator(data.get("locator", data.get("selector")))
        kind = PatchKind.parse(data.get("kind", data.get("type")))
        attribute_name = data.get("attributeName", data.get("name")) or None
        value = data.get("value")

        return cls(
            locator=locator,
            kind=kind,
            value="" if value is None else str(value),
            attribute_name=str(attribute_name) if attribute_name else None,
            id=str(data.get("id") or new_patch_id()),
            created_at=str(data.get("createdAt") or now_iso()),
        )

    def __str__(self) -> str:
        aspect = f"{self.kind.value}:{self.attribute_name}" if self.attribute_name else self.kind.value
        return f"{aspect} @ {self.locator}"
