"""
Locator Resolver - locator to node(s).

Mirrors the synthesizer's scoping rules. All operations are read-only.
"""

from typing import Any, List, Optional
import logging
import re

from lxml import etree

from pagepatch.core.errors import AmbiguousLocator, UnresolvedLocator
from pagepatch.layers.sense.document import (
    DEFAULT_MAX_DEPTH,
    Document,
    is_element,
    query_all,
    query_first,
)
from pagepatch.layers.sense.locator import (
    CssLocator,
    Locator,
    ShadowLocator,
    XPathLocator,
    css_escape,
    parse_locator,
)

logger = logging.getLogger(__name__)

XPATH_ID_RE = re.compile(r"""^//\*\[@id=(?:"([^"]*)"|'([^']*)')\]""")


class LocatorResolver:
    """
    Find the nodes a locator designates.

    Example:
        >>> resolver = LocatorResolver(document)
        >>> resolver.resolve(CssLocator("#price")).text
        '$10'
    """

    def __init__(self, document: Document, max_shadow_depth: int = DEFAULT_MAX_DEPTH):
        self.document = document
        self.max_shadow_depth = max_shadow_depth

    def resolve(self, locator: Any) -> Optional[Any]:
        """First node for the locator, or None."""
        locator = parse_locator(locator)

        if isinstance(locator, CssLocator):
            return query_first(self.document, locator.selector, self.max_shadow_depth)

        if isinstance(locator, XPathLocator):
            matches = self.document.xpath(locator.path) or self._pierce_by_id(locator)
            return matches[0] if matches else None

        if isinstance(locator, ShadowLocator):
            return self._resolve_shadow(locator)

        return None

    def resolve_all(self, locator: Any) -> List[Any]:
        """All nodes for the locator; direct matches win over piercing ones."""
        locator = parse_locator(locator)

        if isinstance(locator, CssLocator):
            direct = self.document.query_all(locator.selector)
            if direct:
                return direct
            return query_all(self.document, locator.selector, self.max_shadow_depth)

        if isinstance(locator, XPathLocator):
            return self.document.xpath(locator.path) or self._pierce_by_id(locator)

        if isinstance(locator, ShadowLocator):
            node = self._resolve_shadow(locator)
            return [node] if node is not None else []

        return []

    def resolve_unique(self, locator: Any) -> Any:
        """
        The single node for the locator.

        Raises:
            UnresolvedLocator: No node matched
            AmbiguousLocator: More than one node matched
        """
        matches = self.resolve_all(locator)
        if not matches:
            raise UnresolvedLocator(locator)
        if len(matches) > 1:
            raise AmbiguousLocator(locator, len(matches))
        return matches[0]

    def _resolve_shadow(self, locator: ShadowLocator) -> Optional[Any]:
        current = self.document
        for hop, host_selector in enumerate(locator.host_path):
            host = current.query_first(host_selector)
            if host is None:
                logger.debug(f"[LocatorResolver] Host {hop} missing: {host_selector}")
                return None
            shadow = self.document.shadow_root(host)
            if shadow is None:
                logger.debug(f"[LocatorResolver] Host {hop} has no open shadow root: {host_selector}")
                return None
            current = shadow
        return current.query_first(locator.inner_selector)

    def _pierce_by_id(self, locator: XPathLocator) -> List[Any]:
        """
        Retry an id-anchored path through shadow roots.

        The id anchor is found with a piercing query and the rest of the
        path is evaluated relative to it.
        """
        match = XPATH_ID_RE.search(locator.path)
        if not match:
            return []
        element_id = match.group(1) if match.group(1) is not None else match.group(2)
        if not element_id:
            return []
        rest = locator.path[match.end():].lstrip("/")
        anchors = query_all(self.document, f"#{css_escape(element_id)}", self.max_shadow_depth)
        if not rest:
            return anchors

        results = []
        for anchor in anchors:
            try:
                found = anchor.xpath(rest)
            except etree.XPathError:
                return []
            results.extend(node for node in found if is_element(node))
        return results
