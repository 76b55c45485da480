"""
Locator model.

A locator is one of three shapes:

    CssLocator     a selector, resolved directly or through shadow roots
    XPathLocator   an absolute path over the primary tree
    ShadowLocator  one host selector per shadow boundary plus an inner
                   selector scoped to the final shadow root

Older stored patches carry either a bare selector string or a shadow
locator whose hosts are joined with " >>> ". parse_locator() normalizes
every accepted shape once, at the boundary.
"""

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple, Union
import json

from pagepatch.core.errors import MalformedPatchPayload


SHADOW_DELIMITER = " >>> "


@dataclass(frozen=True)
class CssLocator:
    selector: str

    kind = "css"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "value": self.selector}

    def __str__(self) -> str:
        return self.selector


@dataclass(frozen=True)
class XPathLocator:
    path: str

    kind = "xpath"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind, "value": self.path}

    def __str__(self) -> str:
        return self.path


@dataclass(frozen=True)
class ShadowLocator:
    host_path: Tuple[str, ...]
    inner_selector: str

    kind = "shadow"

    def __post_init__(self):
        object.__setattr__(self, "host_path", tuple(self.host_path))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "hostPath": list(self.host_path),
            "innerSelector": self.inner_selector,
        }

    def __str__(self) -> str:
        return SHADOW_DELIMITER.join(self.host_path + (self.inner_selector,))


Locator = Union[CssLocator, XPathLocator, ShadowLocator]

LOCATOR_TYPES = (CssLocator, XPathLocator, ShadowLocator)


def serialize(locator: Locator) -> str:
    """Canonical JSON text of a locator, used for patch keys."""
    return json.dumps(locator.to_dict(), sort_keys=True, separators=(",", ":"))


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise MalformedPatchPayload(f"Locator field '{field_name}' must be a non-empty string")
    return value.strip()


def _split_hosts(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(">>>")]
    elif isinstance(value, (list, tuple)):
        parts = [_require_text(part, "hostPath") for part in value]
    else:
        raise MalformedPatchPayload("Shadow locator needs a host path")
    if not parts or not all(parts):
        raise MalformedPatchPayload("Shadow locator host path has an empty segment")
    return tuple(parts)


def parse_locator(value: Any) -> Locator:
    """
    Normalize any accepted locator shape.

    Args:
        value: A locator object, a wire mapping, or a legacy selector string

    Returns:
        CssLocator, XPathLocator or ShadowLocator

    Raises:
        MalformedPatchPayload: If the value is not a recognizable locator
    """
    if isinstance(value, LOCATOR_TYPES):
        return value

    if isinstance(value, str):
        text = _require_text(value, "selector")
        if ">>>" in text:
            parts = _split_hosts(text)
            if len(parts) < 2:
                raise MalformedPatchPayload(f"Shadow locator without inner selector: {text!r}")
            return ShadowLocator(parts[:-1], parts[-1])
        if text.startswith("/") or text.startswith("(/"):
            return XPathLocator(text)
        return CssLocator(text)

    if isinstance(value, Mapping):
        kind = value.get("type", "css")
        if kind == "css":
            return CssLocator(_require_text(value.get("value", value.get("selector")), "value"))
        if kind == "xpath":
            return XPathLocator(_require_text(value.get("value", value.get("path")), "value"))
        if kind == "shadow":
            hosts = value.get("hostPath")
            if hosts is None:
                hosts = value.get("hostSelector")
            return ShadowLocator(
                _split_hosts(hosts),
                _require_text(value.get("innerSelector"), "innerSelector"),
            )
        raise MalformedPatchPayload(f"Unknown locator type: {kind!r}")

    raise MalformedPatchPayload(f"Unsupported locator value: {type(value).__name__}")


def css_escape(value: str) -> str:
    """
    Escape a string for use as a CSS identifier (CSS.escape semantics).

    Example:
        >>> css_escape("1st item")
        '\\\\31 st\\\\ item'
    """
    out = []
    for index, char in enumerate(value):
        code = ord(char)
        if code == 0:
            out.append("�")
        elif (
            0x01 <= code <= 0x1F
            or code == 0x7F
            or (index == 0 and char.isdigit() and char.isascii())
            or (index == 1 and char.isdigit() and char.isascii() and value[0] == "-")
        ):
            out.append(f"\\{code:x} ")
        elif index == 0 and char == "-" and len(value) == 1:
            out.append("\\-")
        elif code >= 0x80 or char in "-_" or (char.isascii() and char.isalnum()):
            out.append(char)
        else:
            out.append("\\" + char)
    return "".join(out)
