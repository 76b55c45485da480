"""
Locator Synthesizer - node to stable, unique locator.

Runs a ranked strategy chain and accepts the first candidate that matches
exactly the target node. Nodes inside shadow roots get a portable CSS
locator when the candidate is unique under the shadow-piercing query, and
a ShadowLocator (host path + inner selector) otherwise.
"""

from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit
import logging

from pagepatch.layers.sense.document import (
    DEFAULT_MAX_DEPTH,
    Document,
    QueryRoot,
    ShadowRoot,
    class_list,
    element_children,
    is_element,
    query_all,
)
from pagepatch.layers.sense.locator import (
    CssLocator,
    Locator,
    ShadowLocator,
    XPathLocator,
    css_escape,
)

logger = logging.getLogger(__name__)

Query = Callable[[str], List[Any]]

SEMANTIC_ATTRIBUTES = ("aria-label", "aria-labelledby", "role", "name", "title", "alt")

LEAF_TEXT_TAGS = frozenset({
    "button", "a", "span", "label", "h1", "h2", "h3", "h4", "h5", "h6",
})

# Classes generated by component frameworks; unstable across renders
FRAMEWORK_CLASS_PREFIXES = ("style-scope", "ng-tns-", "ng-star-inserted", "svelte-")


def _is_only(matches: List[Any], node: Any) -> bool:
    return len(matches) == 1 and matches[0] is node


def _index_of(items: List[Any], node: Any) -> int:
    for index, item in enumerate(items):
        if item is node:
            return index
    return -1


def _is_framework_class(name: str) -> bool:
    return name.startswith(FRAMEWORK_CLASS_PREFIXES)


def _xpath_literal(value: str) -> str:
    if '"' not in value:
        return f'"{value}"'
    if "'" not in value:
        return f"'{value}'"
    pieces = value.split('"')
    return "concat(" + ", '\"', ".join(f'"{piece}"' for piece in pieces) + ")"


def nth_of_type(node: Any) -> int:
    parent = node.getparent()
    if parent is None:
        return 1
    siblings = [child for child in element_children(parent) if child.tag == node.tag]
    return _index_of(siblings, node) + 1


def nth_child(node: Any) -> int:
    parent = node.getparent()
    if parent is None:
        return 1
    return _index_of(element_children(parent), node) + 1


class LocatorSynthesizer:
    """
    Build locators for document nodes.

    Example:
        >>> synthesizer = LocatorSynthesizer(document)
        >>> synthesizer.synthesize(document.get_element_by_id("price"))
        CssLocator(selector='#price')
    """

    MAX_CLIMB_DEPTH = 8
    LEAF_PARENT_DEPTH = 3
    LEAF_MAX_MATCHES = 5

    def __init__(
        self,
        document: Document,
        max_climb_depth: int = MAX_CLIMB_DEPTH,
        max_shadow_depth: int = DEFAULT_MAX_DEPTH,
        reserved_namespace: str = "pagepatch",
    ):
        """
        Args:
            document: Tree to synthesize against
            max_climb_depth: Levels the structural path may climb
            max_shadow_depth: Nesting cap for shadow-piercing uniqueness checks
            reserved_namespace: data-* attributes containing this are the tool's own
        """
        self.document = document
        self.max_climb_depth = max_climb_depth
        self.max_shadow_depth = max_shadow_depth
        self.reserved_namespace = reserved_namespace
        self._cache: Dict[Any, Locator] = {}

    def synthesize(self, node: Any) -> Locator:
        """
        Return a locator that resolves back to node.

        Raises:
            ValueError: If node is not an element attached to the document
        """
        if not is_element(node) or not self.document.is_connected(node):
            raise ValueError(f"Cannot synthesize a locator for a detached node: {node!r}")

        cached = self._cache.get(node)
        if cached is not None:
            return cached

        locator = self._build(node)
        self._cache[node] = locator
        logger.debug(f"[LocatorSynthesizer] <{node.tag}> -> {locator}")
        return locator

    def clear_cache(self) -> None:
        """Forget cached locators; prior structure is no longer representative."""
        self._cache.clear()

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def _build(self, node: Any) -> Locator:
        root = self.document.root_of(node)

        if not isinstance(root, ShadowRoot):
            for selector in self._chain(node, self.document.query_all):
                return CssLocator(selector)
            return XPathLocator(self.build_xpath(node))

        for selector in self._chain(node, root.query_all):
            if _is_only(query_all(self.document, selector, self.max_shadow_depth), node):
                return CssLocator(selector)
            return ShadowLocator(self._host_path(root), selector)

        return ShadowLocator(self._host_path(root), self._full_path(node, root))

    def _chain(self, node: Any, query: Query) -> Iterator[str]:
        """Yield accepted candidates in rank order."""
        def unique(selector: str) -> bool:
            return _is_only(query(selector), node)

        strategies = (
            self._by_id,
            self._by_data_attribute,
            self._by_semantic_attribute,
            self._by_link,
            self._by_classes,
            self._by_leaf_text,
            self._by_structure,
        )
        for strategy in strategies:
            selector = strategy(node, unique, query)
            if selector:
                yield selector

    def _host_path(self, shadow: ShadowRoot) -> Tuple[str, ...]:
        """One selector per shadow boundary, outermost first."""
        path: List[str] = []
        seen = set()
        host = shadow.host
        while host is not None and host not in seen and len(path) < self.max_shadow_depth:
            seen.add(host)
            path.insert(0, self._host_selector(host))
            host = self.document.host_of(host)
        return tuple(path)

    def _host_selector(self, host: Any) -> str:
        root = self.document.root_of(host)
        for selector in self._chain(host, root.query_all):
            return selector
        # Repeated structure deeper than the climb cap: anchor at the top
        return self._full_path(host, root)

    def _full_path(self, node: Any, root: QueryRoot) -> str:
        """Uncapped structural path from the top of node's tree down to node."""
        path, _ = self._climb(node, lambda selector: False, max_depth=10_000)
        if _is_only(root.query_all(path), node):
            return path
        anchored = f":root > {path}"
        if not _is_only(root.query_all(anchored), node):
            logger.warning(f"[LocatorSynthesizer] Full path is not unique: {anchored}")
        return anchored

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _by_id(self, node: Any, unique: Callable[[str], bool], query: Query) -> Optional[str]:
        element_id = node.get("id")
        if not element_id:
            return None
        selector = f"#{css_escape(element_id)}"
        return selector if unique(selector) else None

    def _by_data_attribute(self, node: Any, unique: Callable[[str], bool], query: Query) -> Optional[str]:
        tag = node.tag.lower()
        for name, value in node.attrib.items():
            if not name.startswith("data-") or self.reserved_namespace in name:
                continue
            if not 0 < len(value) <= 100:
                continue
            selector = f'{tag}[{name}="{css_escape(value)}"]'
            if unique(selector):
                return selector
        return None

    def _by_semantic_attribute(self, node: Any, unique: Callable[[str], bool], query: Query) -> Optional[str]:
        tag = node.tag.lower()
        for name in SEMANTIC_ATTRIBUTES:
            value = node.get(name)
            if value and len(value) <= 80:
                selector = f'{tag}[{name}="{css_escape(value)}"]'
                if unique(selector):
                    return selector
        return None

    def _by_link(self, node: Any, unique: Callable[[str], bool], query: Query) -> Optional[str]:
        tag = node.tag.lower()
        if tag == "a" and node.get("href"):
            path = urlsplit(node.get("href")).path[:50]
            if path:
                selector = f'a[href*="{css_escape(path)}"]'
                if unique(selector):
                    return selector
        if tag == "img" and node.get("src"):
            filename = urlsplit(node.get("src")).path.rsplit("/", 1)[-1]
            if filename:
                selector = f'img[src*="{css_escape(filename)}"]'
                if unique(selector):
                    return selector
        return None

    def _by_classes(self, node: Any, unique: Callable[[str], bool], query: Query) -> Optional[str]:
        classes = [
            c for c in class_list(node)
            if len(c) <= 50 and not c[0].isdigit() and not _is_framework_class(c)
        ][:3]
        if not classes:
            return None
        selector = node.tag.lower() + "".join(f".{css_escape(c)}" for c in classes)
        return selector if unique(selector) else None

    def _by_leaf_text(self, node: Any, unique: Callable[[str], bool], query: Query) -> Optional[str]:
        tag = node.tag.lower()
        if tag not in LEAF_TEXT_TAGS:
            return None
        # Only child must be a single text node
        if len(node) or not node.text:
            return None
        if not 0 < len(node.text.strip()) <= 50:
            return None

        parent = node.getparent()
        if parent is None or self.document.is_fragment(parent):
            return None
        parent_path, _ = self._climb(
            parent,
            lambda selector: _is_only(query(selector), parent),
            self.LEAF_PARENT_DEPTH,
        )
        if not parent_path:
            return None

        combined = f"{parent_path} > {tag}"
        matches = query(combined)
        if _index_of(matches, node) == -1 or len(matches) > self.LEAF_MAX_MATCHES:
            return None
        selector = f"{combined}:nth-child({nth_child(node)})"
        return selector if unique(selector) else None

    def _by_structure(self, node: Any, unique: Callable[[str], bool], query: Query) -> Optional[str]:
        path, is_unique = self._climb(node, unique, self.max_climb_depth)
        return path if is_unique else None

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _path_part(self, node: Any) -> str:
        tag = node.tag.lower()
        element_id = node.get("id")
        if element_id:
            part = f"{tag}#{css_escape(element_id)}"
        else:
            classes = [
                c for c in class_list(node)
                if len(c) <= 40 and not c[0].isdigit() and not _is_framework_class(c)
            ][:2]
            part = tag + "".join(f".{css_escape(c)}" for c in classes)
        # Sibling ordinal is always added, ids included
        return f"{part}:nth-of-type({nth_of_type(node)})"

    def _climb(self, node: Any, unique: Callable[[str], bool], max_depth: int) -> Tuple[Optional[str], bool]:
        """
        Walk toward the root, stopping once the accumulated path is unique.

        Never leaves the node's own tree: the climb ends at a shadow root.

        Returns:
            (path, is_unique); path is None when nothing could be emitted
        """
        parts: List[str] = []
        current = node
        candidate = None
        while (
            current is not None
            and is_element(current)
            and not self.document.is_fragment(current)
            and len(parts) < max_depth
        ):
            parts.insert(0, self._path_part(current))
            candidate = " > ".join(parts)
            if unique(candidate):
                return candidate, True
            current = current.getparent()
        return candidate, False

    def build_xpath(self, node: Any) -> str:
        """Absolute path with index predicates; stops early on an ancestor with a unique id."""
        parts: List[str] = []
        current = node
        while current is not None and is_element(current) and not self.document.is_fragment(current):
            element_id = current.get("id")
            if element_id:
                anchor = f"*[@id={_xpath_literal(element_id)}]"
                if len(self.document.xpath(f"//{anchor}")) == 1:
                    parts.insert(0, anchor)
                    break
            part = current.tag.lower()
            parent = current.getparent()
            if parent is not None:
                siblings = [c for c in element_children(parent) if c.tag == current.tag]
                if len(siblings) > 1:
                    part += f"[{_index_of(siblings, current) + 1}]"
            parts.insert(0, part)
            current = parent
        return "//" + "/".join(parts)
