"""
Inline style declarations.

The operator types declarations as free text ("color: red; margin: 0").
parse_declarations() turns that into (name, value) pairs; InlineStyle is an
ordered, priority-aware view of an element's style attribute.
"""

from typing import Dict, List, Optional, Tuple
import re


IMPORTANT_RE = re.compile(r"!\s*important", re.IGNORECASE)


def _normalize_name(name: str) -> str:
    name = name.strip()
    # Custom properties are case-sensitive
    return name if name.startswith("--") else name.lower()


def parse_declarations(value: Optional[str]) -> List[Tuple[str, str]]:
    """
    Split free-text declarations on ';' then on the first ':'.

    Malformed declarations are dropped silently and any !important marker
    is stripped from the value.

    Example:
        >>> parse_declarations("color: red !important; bogus; margin:0")
        [('color', 'red'), ('margin', '0')]
    """
    pairs = []
    for chunk in str(value or "").split(";"):
        name, sep, raw = chunk.partition(":")
        name = _normalize_name(name)
        raw = IMPORTANT_RE.sub("", raw).strip()
        if not sep or not name or not raw:
            continue
        pairs.append((name, raw))
    return pairs


class InlineStyle:
    """Ordered inline declarations with per-property priority."""

    def __init__(self):
        self._values: Dict[str, str] = {}
        self._important: Dict[str, bool] = {}

    @classmethod
    def parse(cls, text: Optional[str]) -> "InlineStyle":
        style = cls()
        for chunk in str(text or "").split(";"):
            name, sep, raw = chunk.partition(":")
            name = _normalize_name(name)
            important = bool(IMPORTANT_RE.search(raw))
            raw = IMPORTANT_RE.sub("", raw).strip()
            if sep and name and raw:
                style.set_property(name, raw, important)
        return style

    def set_property(self, name: str, value: str, important: bool = False) -> None:
        name = _normalize_name(name)
        # Existing properties keep their position
        self._values[name] = value
        self._important[name] = important

    def remove_property(self, name: str) -> None:
        name = _normalize_name(name)
        self._values.pop(name, None)
        self._important.pop(name, None)

    def get(self, name: str) -> Optional[str]:
        return self._values.get(_normalize_name(name))

    def is_important(self, name: str) -> bool:
        return self._important.get(_normalize_name(name), False)

    def to_css(self) -> str:
        return " ".join(
            f"{name}: {value}{' !important' if self._important[name] else ''};"
            for name, value in self._values.items()
        )

    def __contains__(self, name: str) -> bool:
        return _normalize_name(name) in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"InlineStyle({self.to_css()!r})"
