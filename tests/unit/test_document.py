"""
Unit tests for the Document tree: shadow hydration, piercing queries and
the addressable filter.
"""

import pytest
from lxml import etree

from pagepatch.layers.sense.document import (
    RESERVED_ROOT_ID,
    Document,
    InteractionEvent,
    ShadowRoot,
    is_addressable,
    iter_shadow_roots,
    node_from_event,
    node_from_point,
    query_all,
    query_first,
)


CARD_PAGE = """
<html><body>
  <h1 id="title">Item</h1>
  <product-card id="card">
    <template shadowrootmode="open"><div class="inner">Offer</div><button>Buy</button></template>
    <span slot="label">Light DOM</span>
  </product-card>
</body></html>
"""

NESTED_PAGE = (
    '<html><body><div id="l1"><template shadowrootmode="open">'
    '<div id="l2"><template shadowrootmode="open">'
    '<div id="l3"><template shadowrootmode="open">'
    '<p class="deep">bottom</p>'
    '</template></div></template></div></template></div></body></html>'
)


def test_declarative_template_becomes_shadow_root():
    """A <template shadowrootmode> is hydrated into a detached shadow root."""
    doc = Document.from_html(CARD_PAGE)
    host = doc.get_element_by_id("card")

    shadow = doc.shadow_root(host)
    assert isinstance(shadow, ShadowRoot)
    assert shadow.mode == "open"
    assert [child.tag for child in shadow.children] == ["div", "button"]
    # The template is gone from the light DOM, the slotted child stays
    assert host.find("template") is None
    assert host.find("span") is not None


def test_direct_query_stops_at_shadow_boundary():
    doc = Document.from_html(CARD_PAGE)

    assert doc.query_first(".inner") is None
    assert doc.query_all("button") == []


def test_piercing_query_reaches_shadow_content():
    doc = Document.from_html(CARD_PAGE)

    inner = query_first(doc, ".inner")
    assert inner is not None
    assert inner.text == "Offer"
    assert query_all(doc, "button")[0].text == "Buy"


def test_piercing_query_lists_direct_matches_first():
    doc = Document.from_html(CARD_PAGE)
    doc.append_html(doc.body, '<div class="inner">Light</div>')

    matches = query_all(doc, ".inner")
    assert [m.text for m in matches] == ["Light", "Offer"]


def test_nested_roots_are_traversed():
    doc = Document.from_html(NESTED_PAGE)

    assert query_first(doc, ".deep").text == "bottom"
    assert len(list(iter_shadow_roots(doc))) == 3


def test_depth_cap_truncates_traversal():
    """Reaching the nesting cap ends the walk without an error."""
    doc = Document.from_html(NESTED_PAGE)

    assert query_all(doc, ".deep", max_depth=2) == []
    assert len(query_all(doc, ".deep", max_depth=3)) == 1


def test_closed_roots_are_invisible_to_queries():
    doc = Document.from_html('<html><body><div id="host"></div></body></html>')
    host = doc.get_element_by_id("host")
    doc.attach_shadow(host, mode="closed", markup='<p class="secret">hidden</p>')

    assert doc.shadow_root(host) is None
    assert doc.shadow_root(host, include_closed=True).mode == "closed"
    assert query_first(doc, ".secret") is None


def test_attach_shadow_rejects_bad_mode_and_second_root():
    doc = Document.from_html('<html><body><div id="host"></div></body></html>')
    host = doc.get_element_by_id("host")

    with pytest.raises(ValueError):
        doc.attach_shadow(host, mode="sealed")

    doc.attach_shadow(host)
    with pytest.raises(ValueError):
        doc.attach_shadow(host)


def test_first_declarative_root_wins():
    doc = Document.from_html(
        '<html><body><x-a id="a">'
        '<template shadowrootmode="open"><b>one</b></template>'
        '<template shadowrootmode="open"><b>two</b></template>'
        '</x-a></body></html>'
    )
    shadow = doc.shadow_root(doc.get_element_by_id("a"))

    assert [b.text for b in shadow.query_all("b")] == ["one"]


def test_invalid_selector_matches_nothing():
    doc = Document.from_html(CARD_PAGE)

    assert doc.query_all("div[") == []
    assert query_all(doc, "div[") == []
    assert doc.xpath("//[") == []


def test_connectivity_and_roots():
    doc = Document.from_html(CARD_PAGE)
    host = doc.get_element_by_id("card")
    inner = query_first(doc, ".inner")

    assert doc.root_of(host) is doc
    assert doc.root_of(inner) is doc.shadow_root(host)
    assert doc.host_of(inner) is host
    assert doc.is_connected(inner)

    doc.detach(host)
    assert not doc.is_connected(host)
    assert not doc.is_connected(inner)


def test_composed_ancestors_cross_shadow_boundary():
    doc = Document.from_html(CARD_PAGE)
    inner = query_first(doc, ".inner")

    tags = [node.tag for node in doc.composed_ancestors(inner)]
    assert tags == ["div", "product-card", "body", "html"]


def test_is_addressable():
    doc = Document.from_html(
        '<html><head><script>var x;</script></head><body>'
        '<p id="text">hi</p>'
        f'<div id="{RESERVED_ROOT_ID}"><button id="tool">Save</button></div>'
        '</body></html>'
    )

    assert is_addressable(doc, doc.get_element_by_id("text"))
    assert is_addressable(doc, doc.body)
    assert not is_addressable(doc, doc.root)
    assert not is_addressable(doc, doc.root.find(".//script"))
    assert not is_addressable(doc, doc.get_element_by_id("tool"))


def test_tool_subtree_excluded_across_shadow_boundary():
    doc = Document.from_html(f'<html><body><div id="{RESERVED_ROOT_ID}"></div></body></html>')
    tool_root = doc.get_element_by_id(RESERVED_ROOT_ID)
    shadow = doc.attach_shadow(tool_root, markup="<button>Save</button>")

    assert not is_addressable(doc, shadow.query_first("button"))
    assert not is_addressable(doc, shadow.fragment)


def test_node_from_event_uses_composed_path():
    """The first usable element of the composed path is the target, even in closed roots."""
    doc = Document.from_html('<html><body><div id="host"></div></body></html>')
    host = doc.get_element_by_id("host")
    shadow = doc.attach_shadow(host, mode="closed", markup="<span>deep</span>")
    span = shadow.query_first("span")

    event = InteractionEvent(composed_path=[span, shadow.fragment, host, doc.body, doc.root])
    assert node_from_event(doc, event) is span

    assert node_from_event(doc, InteractionEvent(composed_path=[doc.body, doc.root])) is None


def test_node_from_event_ignores_tool_nodes():
    doc = Document.from_html(
        f'<html><body><div id="{RESERVED_ROOT_ID}"><button id="save">Save</button></div></body></html>'
    )
    button = doc.get_element_by_id("save")
    tool_root = button.getparent()

    event = InteractionEvent(composed_path=[button, tool_root, doc.body, doc.root])
    assert node_from_event(doc, event) is None


def test_node_from_point_descends_open_roots_only():
    doc = Document.from_html(
        '<html><body><div id="open"></div><div id="closed"></div></body></html>'
    )
    open_host = doc.get_element_by_id("open")
    closed_host = doc.get_element_by_id("closed")
    inner = doc.attach_shadow(open_host, markup="<em>in</em>").query_first("em")
    doc.attach_shadow(closed_host, mode="closed", markup="<em>secret</em>")

    def hit_open(root, x, y):
        return open_host if root is doc else inner

    def hit_closed(root, x, y):
        return closed_host if root is doc else None

    assert node_from_point(doc, 10, 10, hit_open) is inner
    assert node_from_point(doc, 10, 10, hit_closed) is closed_host


def test_mutations_emit_records():
    doc = Document.from_html('<html><body><p id="p">a</p></body></html>')
    p = doc.get_element_by_id("p")
    records = []
    doc.observe(records.append)

    doc.set_text(p, "b")
    doc.set_attribute(p, "title", "t")
    doc.remove_attribute(p, "missing")

    assert [(r.type, r.attribute_name) for r in records] == [
        ("childList", None),
        ("attributes", "title"),
    ]

    doc.unobserve(records.append)
    doc.set_text(p, "c")
    assert len(records) == 2


def test_set_html_and_inner_html():
    doc = Document.from_html('<html><body><p id="p">a</p></body></html>')
    p = doc.get_element_by_id("p")

    doc.set_html(p, "<b>Sale</b> now")

    assert doc.inner_html(p) == "<b>Sale</b> now"
    assert doc.normalize_markup("<b>Sale</b> now") == "<b>Sale</b> now"
    assert doc.text_content(p) == "Sale now"


def test_append_html_hydrates_shadow_roots():
    doc = Document.from_html("<html><body></body></html>")

    added = doc.append_html(doc.body, '<x-w id="w"><template shadowrootmode="open"><i>w</i></template></x-w>')

    assert [el.tag for el in added] == ["x-w"]
    assert query_first(doc, "i").text == "w"


def test_outer_html_and_to_html_keep_shadow_roots():
    doc = Document.from_html(CARD_PAGE)
    host = doc.get_element_by_id("card")

    assert 'shadowrootmode="open"' in doc.outer_html(host, include_shadow=True)
    assert "shadowrootmode" not in doc.outer_html(host)

    again = Document.from_html(doc.to_html())
    assert again.query_first(".inner") is None
    assert query_first(again, ".inner").text == "Offer"
    assert again.get_element_by_id("card").find("span").text == "Light DOM"


def test_detach_returns_parent():
    doc = Document.from_html('<html><body><ul id="list"><li>a</li></ul></body></html>')
    ul = doc.get_element_by_id("list")
    li = ul.find("li")

    assert doc.detach(li) is ul
    assert len(ul) == 0
    with pytest.raises(ValueError):
        doc.detach(li)


def test_element_iteration_skips_fragments():
    """Shadow fragments never appear in the primary tree."""
    doc = Document.from_html(CARD_PAGE)

    tags = {el.tag for el in doc.root.iter(etree.Element)}
    assert "shadow-root" not in tags
    assert "template" not in tags
