"""
Document - Tree Abstraction over lxml.

Wraps a parsed lxml.html tree and the shadow roots attached to its
elements. Ordinary lxml queries stop at a shadow boundary exactly like
querySelector does in a browser, so this module also provides the
shadow-piercing query and traversal primitives the locator engine needs.

Shadow roots are detached fragments registered against their host. They
come from declarative markup (<template shadowrootmode="open">) or from
Document.attach_shadow().
"""

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Set, Union
import html as html_lib
import copy
import logging

import lxml.html
from lxml import etree
from lxml.cssselect import CSSSelector
from cssselect import SelectorError

logger = logging.getLogger(__name__)

# Id of the tool's own injected subtree; never addressable, never observed
RESERVED_ROOT_ID = "__pagepatch_root__"

DEFAULT_MAX_DEPTH = 20

NON_CONTENT_TAGS = frozenset({
    "script", "style", "noscript", "meta", "link", "head", "html",
})

# Interaction targets additionally skip the body
EVENT_SKIP_TAGS = NON_CONTENT_TAGS | {"body"}

SHADOW_MODES = ("open", "closed")

SHADOW_FRAGMENT_TAG = "shadow-root"


@dataclass
class MutationRecord:
    """A single change notification emitted by a Document."""
    type: str  # 'childList' or 'attributes'
    target: Any
    attribute_name: Optional[str] = None


@dataclass
class InteractionEvent:
    """
    Pointer interaction as seen by the picking collaborator.

    composed_path lists the event targets from the deepest element outwards,
    including elements inside closed shadow roots.
    """
    composed_path: Sequence[Any] = field(default_factory=list)
    x: float = 0.0
    y: float = 0.0


def is_element(obj: Any) -> bool:
    """True for lxml elements (not comments, processing instructions or text)."""
    return isinstance(getattr(obj, "tag", None), str)


def class_list(node: Any) -> List[str]:
    """The node's class tokens in attribute order."""
    return (node.get("class") or "").split()


def element_children(node: Any) -> List[Any]:
    return [child for child in node if is_element(child)]


@lru_cache(maxsize=1024)
def _compile(selector: str) -> Optional[CSSSelector]:
    try:
        return CSSSelector(selector, translator="html")
    except (SelectorError, etree.XPathSyntaxError):
        logger.debug(f"[Document] Invalid selector ignored: {selector!r}")
        return None


def _select(container: Any, selector: str, include_self: bool = True) -> List[Any]:
    compiled = _compile(selector)
    if compiled is None:
        return []
    try:
        matches = compiled(container)
    except etree.XPathError:
        return []
    if include_self:
        return matches
    return [node for node in matches if node is not container]


class ShadowRoot:
    """An encapsulated sub-tree attached to a host element."""

    def __init__(self, document: "Document", host: Any, mode: str, fragment: Any):
        self.document = document
        self.host = host
        self.mode = mode
        self.fragment = fragment

    @property
    def children(self) -> List[Any]:
        return element_children(self.fragment)

    def query_first(self, selector: str) -> Optional[Any]:
        matches = self.query_all(selector)
        return matches[0] if matches else None

    def query_all(self, selector: str) -> List[Any]:
        """Non-piercing query within this root."""
        return _select(self.fragment, selector, include_self=False)

    def __repr__(self) -> str:
        return f"<ShadowRoot mode={self.mode} host={self.host.tag}>"


QueryRoot = Union["Document", ShadowRoot]


class Document:
    """
    A document tree with shadow roots.

    Example:
        >>> doc = Document.from_html('<div id="card"><template shadowrootmode="open">'
        ...                          '<p class="inner">hi</p></template></div>')
        >>> doc.query_first(".inner") is None
        True
        >>> query_first(doc, ".inner").text
        'hi'
    """

    def __init__(self, root: Any, address: str = "about:blank"):
        self.root = root
        self.address = address
        self._shadows: Dict[Any, ShadowRoot] = {}
        self._fragments: Dict[Any, ShadowRoot] = {}
        self._observers: List[Callable[[MutationRecord], None]] = []
        self._hydrate(self.root)

    @classmethod
    def from_html(cls, markup: str, address: str = "about:blank") -> "Document":
        """Parse a full HTML document, hydrating declarative shadow roots."""
        return cls(lxml.html.document_fromstring(markup), address=address)

    @property
    def body(self) -> Optional[Any]:
        return self.root.find("body")

    # ------------------------------------------------------------------
    # Shadow roots
    # ------------------------------------------------------------------

    def attach_shadow(self, host: Any, mode: str = "open", markup: Optional[str] = None) -> ShadowRoot:
        """
        Attach a shadow root to host.

        Args:
            host: Element that will own the shadow root
            mode: "open" (reachable through shadow_root()) or "closed"
            markup: Optional initial inner markup

        Returns:
            The new ShadowRoot
        """
        if mode not in SHADOW_MODES:
            raise ValueError(f"Invalid shadow root mode: {mode!r}")
        if host in self._shadows:
            raise ValueError(f"<{host.tag}> already hosts a shadow root")
        shadow = self._create_shadow(host, mode)
        if markup:
            _fill(shadow.fragment, _parse_fragment(markup))
            self._hydrate(shadow.fragment)
        self.notify(host)
        return shadow

    def shadow_root(self, host: Any, include_closed: bool = False) -> Optional[ShadowRoot]:
        """The host's shadow root. Closed roots are hidden unless include_closed."""
        shadow = self._shadows.get(host)
        if shadow is None or (shadow.mode == "closed" and not include_closed):
            return None
        return shadow

    def is_fragment(self, node: Any) -> bool:
        return node in self._fragments

    def root_of(self, node: Any) -> Optional[QueryRoot]:
        """The Document or ShadowRoot the node lives in; None when detached."""
        top = node
        for ancestor in node.iterancestors():
            top = ancestor
        if top is self.root:
            return self
        return self._fragments.get(top)

    def host_of(self, node: Any) -> Optional[Any]:
        root = self.root_of(node)
        return root.host if isinstance(root, ShadowRoot) else None

    def is_connected(self, node: Any) -> bool:
        """True if node is reachable from the document, across shadow hosts."""
        seen: Set[Any] = set()
        current = node
        while current is not None and current not in seen:
            seen.add(current)
            root = self.root_of(current)
            if root is self:
                return True
            if root is None:
                return False
            current = root.host
        return False

    def composed_ancestors(self, node: Any) -> Iterator[Any]:
        """Yield node and its ancestors, stepping from shadow roots to their hosts."""
        seen: Set[Any] = set()
        current = node
        while current is not None and current not in seen:
            seen.add(current)
            shadow = self._fragments.get(current)
            if shadow is not None:
                current = shadow.host
                continue
            yield current
            current = current.getparent()

    def _create_shadow(self, host: Any, mode: str) -> ShadowRoot:
        shadow = ShadowRoot(self, host, mode, lxml.html.Element(SHADOW_FRAGMENT_TAG))
        self._shadows[host] = shadow
        self._fragments[shadow.fragment] = shadow
        return shadow

    def _hydrate(self, container: Any) -> None:
        """Turn <template shadowrootmode> children into attached shadow roots."""
        for template in list(container.iter("template")):
            mode = template.get("shadowrootmode") or template.get("shadowroot")
            host = template.getparent()
            if mode not in SHADOW_MODES or host is None or host in self._fragments:
                continue
            if host in self._shadows:
                # Only the first declarative root of a host is honoured
                continue
            shadow = self._create_shadow(host, mode)
            shadow.fragment.text = template.text
            template.text = None
            for child in list(template):
                shadow.fragment.append(child)
            template.drop_tree()

    # ------------------------------------------------------------------
    # Direct (non-piercing) queries
    # ------------------------------------------------------------------

    def query_first(self, selector: str) -> Optional[Any]:
        matches = self.query_all(selector)
        return matches[0] if matches else None

    def query_all(self, selector: str) -> List[Any]:
        return _select(self.root, selector)

    def xpath(self, path: str) -> List[Any]:
        """Evaluate an XPath expression against the primary tree."""
        try:
            result = self.root.xpath(path)
        except etree.XPathError:
            logger.debug(f"[Document] Invalid XPath ignored: {path!r}")
            return []
        if not isinstance(result, list):
            return []
        return [node for node in result if is_element(node)]

    def get_element_by_id(self, element_id: str) -> Optional[Any]:
        matches = self.root.xpath("//*[@id=$value]", value=element_id)
        return matches[0] if matches else None

    # ------------------------------------------------------------------
    # Content access and mutation
    # ------------------------------------------------------------------

    def text_content(self, node: Any) -> str:
        return node.text_content()

    def inner_html(self, node: Any) -> str:
        parts = [html_lib.escape(node.text, quote=False)] if node.text else []
        for child in node:
            parts.append(lxml.html.tostring(child, encoding="unicode", with_tail=True))
        return "".join(parts)

    def normalize_markup(self, markup: Optional[str]) -> str:
        """Markup as inner_html() would report it after set_html(markup)."""
        return self.inner_html(_parse_fragment(markup))

    def outer_html(self, node: Any, include_shadow: bool = False) -> str:
        """Serialize node; include_shadow re-emits shadow roots as declarative templates."""
        target = self._clone(node) if include_shadow else node
        return lxml.html.tostring(target, encoding="unicode", with_tail=False)

    def to_html(self) -> str:
        """Serialize the whole document, shadow roots included."""
        return lxml.html.tostring(
            self._clone(self.root),
            encoding="unicode",
            doctype="<!DOCTYPE html>",
        )

    def set_text(self, node: Any, value: Optional[str]) -> None:
        for child in list(node):
            node.remove(child)
        node.text = value or None
        self.notify(node)

    def set_html(self, node: Any, markup: Optional[str]) -> None:
        fragment = _parse_fragment(markup)
        for child in list(node):
            node.remove(child)
        node.text = None
        _fill(node, fragment)
        self.notify(node)

    def set_attribute(self, node: Any, name: str, value: str) -> None:
        node.set(name, value)
        self.notify(node, "attributes", name)

    def remove_attribute(self, node: Any, name: str) -> None:
        if name in node.attrib:
            del node.attrib[name]
            self.notify(node, "attributes", name)

    def detach(self, node: Any) -> Any:
        """Remove node from its parent, keeping the surrounding text. Returns the parent."""
        parent = node.getparent()
        if parent is None:
            raise ValueError(f"<{node.tag}> is not attached")
        node.drop_tree()
        self.notify(parent)
        return parent

    def append_html(self, parent: Any, markup: str) -> List[Any]:
        """Parse markup and append it to parent. Returns the new elements."""
        fragment = _parse_fragment(markup)
        added = element_children(fragment)
        _fill(parent, fragment)
        self._hydrate(parent)
        self.notify(parent)
        return added

    # ------------------------------------------------------------------
    # Mutation notifications
    # ------------------------------------------------------------------

    def observe(self, callback: Callable[[MutationRecord], None]) -> None:
        if callback not in self._observers:
            self._observers.append(callback)

    def unobserve(self, callback: Callable[[MutationRecord], None]) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def notify(self, target: Any, type: str = "childList", attribute_name: Optional[str] = None) -> None:
        """Emit a mutation record. Hosts that edit the lxml tree directly call this."""
        record = MutationRecord(type=type, target=target, attribute_name=attribute_name)
        for callback in list(self._observers):
            callback(record)

    def _clone(self, node: Any) -> Any:
        if not is_element(node):
            return copy.copy(node)
        clone = node.makeelement(node.tag, dict(node.attrib))
        clone.text = node.text
        clone.tail = node.tail
        shadow = self._shadows.get(node)
        if shadow is not None:
            template = node.makeelement("template", {"shadowrootmode": shadow.mode})
            template.text = shadow.fragment.text
            for child in shadow.fragment:
                template.append(self._clone(child))
            clone.append(template)
            template.tail = clone.text
            clone.text = None
        for child in node:
            clone.append(self._clone(child))
        return clone


def _parse_fragment(markup: Optional[str]) -> Any:
    if not markup:
        return lxml.html.Element("div")
    return lxml.html.fragment_fromstring(markup, create_parent="div")


def _fill(target: Any, fragment: Any) -> None:
    """Move fragment's text and children to the end of target."""
    if fragment.text:
        children = list(target)
        if children:
            children[-1].tail = (children[-1].tail or "") + fragment.text
        else:
            target.text = (target.text or "") + fragment.text
    for child in list(fragment):
        target.append(child)


# ----------------------------------------------------------------------
# Shadow-piercing traversal
# ----------------------------------------------------------------------

def _document_of(root: QueryRoot) -> "Document":
    return root if isinstance(root, Document) else root.document


def _container_of(root: QueryRoot) -> Any:
    return root.root if isinstance(root, Document) else root.fragment


def iter_shadow_roots(root: QueryRoot, max_depth: int = DEFAULT_MAX_DEPTH) -> Iterator[ShadowRoot]:
    """
    Yield every open shadow root reachable from root, in document order.

    Nested roots are visited up to max_depth levels deep. Reaching the cap
    truncates the walk; it is not an error.
    """
    document = _document_of(root)
    visited: Set[Any] = set()

    def walk(container: Any, level: int) -> Iterator[ShadowRoot]:
        if level > max_depth:
            logger.debug(f"[Document] Shadow traversal truncated at depth {max_depth}")
            return
        for element in container.iter(etree.Element):
            if element in visited:
                continue
            visited.add(element)
            shadow = document.shadow_root(element)
            if shadow is None or shadow in visited:
                continue
            visited.add(shadow)
            yield shadow
            yield from walk(shadow.fragment, level + 1)

    yield from walk(_container_of(root), 1)


def query_first(root: QueryRoot, selector: str, max_depth: int = DEFAULT_MAX_DEPTH) -> Optional[Any]:
    """First match in root's tree, else in any reachable shadow root."""
    match = root.query_first(selector)
    if match is not None:
        return match
    for shadow in iter_shadow_roots(root, max_depth):
        match = shadow.query_first(selector)
        if match is not None:
            return match
    return None


def query_all(root: QueryRoot, selector: str, max_depth: int = DEFAULT_MAX_DEPTH) -> List[Any]:
    """All matches in root's tree followed by matches in every reachable shadow root."""
    results = list(root.query_all(selector))
    for shadow in iter_shadow_roots(root, max_depth):
        results.extend(shadow.query_all(selector))
    return results


# ----------------------------------------------------------------------
# Picking helpers and the addressable filter
# ----------------------------------------------------------------------

def is_tool_node(document: Document, node: Any, reserved_root_id: str = RESERVED_ROOT_ID) -> bool:
    """True if node sits inside the tool's own injected subtree."""
    return any(
        is_element(ancestor) and ancestor.get("id") == reserved_root_id
        for ancestor in document.composed_ancestors(node)
    )


def is_addressable(document: Document, node: Any, reserved_root_id: str = RESERVED_ROOT_ID) -> bool:
    """Whether node may be targeted by a patch."""
    if not is_element(node) or document.is_fragment(node):
        return False
    if node.tag.lower() in NON_CONTENT_TAGS:
        return False
    return not is_tool_node(document, node, reserved_root_id)


def node_from_event(
    document: Document,
    event: InteractionEvent,
    reserved_root_id: str = RESERVED_ROOT_ID,
) -> Optional[Any]:
    """
    Deepest usable target of an interaction.

    The composed path is authoritative even for closed shadow roots.
    """
    for item in event.composed_path or ():
        if not is_element(item) or document.is_fragment(item):
            continue
        if item.tag.lower() in EVENT_SKIP_TAGS:
            continue
        if is_tool_node(document, item, reserved_root_id):
            continue
        return item
    return None


def node_from_point(
    document: Document,
    x: float,
    y: float,
    hit_test: Callable[[QueryRoot, float, float], Optional[Any]],
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Optional[Any]:
    """
    Coordinate-based fallback for picking.

    hit_test(root, x, y) returns the topmost element of one root at the
    point. Only open shadow roots can be descended into.
    """
    element = hit_test(document, x, y)
    depth = 0
    while element is not None and depth < max_depth:
        shadow = document.shadow_root(element)
        if shadow is None:
            break
        inner = hit_test(shadow, x, y)
        if inner is None or inner is element:
            break
        element = inner
        depth += 1
    return element
