"""
Unit tests for undo: pre-image capture, marker cleanup and the bounded stack.
"""

from pagepatch import PatchSession
from pagepatch.core.scope import Scope
from pagepatch.layers.memory.patches import PATCHED_ATTR, PatchKind
from pagepatch.layers.memory.store import PatchStore
from pagepatch.layers.memory.undo import PatchGroup, UndoEntry, UndoManager, capture_pre_image
from pagepatch.layers.sense.document import Document, query_first
from pagepatch.layers.sense.locator import CssLocator
from pagepatch.layers.sense.resolver import LocatorResolver


PAGE = """
<html><body>
  <div class="product"><span id="price">$10</span></div>
  <p id="lead" style="color: blue">Lead <b>text</b></p>
  <img id="hero" src="a.png">
  <ul id="list"><li class="a">One</li><li class="b">Two</li></ul>
  <x-card id="card"><template shadowrootmode="open"><div class="inner">Offer</div></template></x-card>
</body></html>
"""


def _session():
    session = PatchSession(Document.from_html(PAGE, address="https://shop.example/item"))
    session.activate()
    return session


def test_undo_text_restores_and_drops_patch():
    session = _session()
    price = session.document.get_element_by_id("price")
    session.commit([price], PatchKind.SET_TEXT, "$12")

    result = session.undo_last()

    assert result.restored == 1
    assert price.text == "$10"
    assert session.patches == []
    assert PATCHED_ATTR not in price.attrib
    assert "data-pagepatch-text" not in price.attrib


def test_undo_html_restores_inner_markup():
    session = _session()
    lead = session.document.get_element_by_id("lead")
    session.commit([lead], PatchKind.SET_HTML, "<i>replaced</i>")

    session.undo_last()

    assert session.document.inner_html(lead) == "Lead <b>text</b>"


def test_undo_attribute_that_did_not_exist_removes_it():
    session = _session()
    hero = session.document.get_element_by_id("hero")
    session.commit([hero], PatchKind.SET_ATTRIBUTE, "Hero image", "alt")
    assert hero.get("alt") == "Hero image"

    session.undo_last()

    assert "alt" not in hero.attrib
    assert hero.get("src") == "a.png"


def test_undo_style_restores_original_inline_style():
    session = _session()
    lead = session.document.get_element_by_id("lead")
    session.commit([lead], PatchKind.APPEND_STYLE, "color: red")

    session.undo_last()

    assert lead.get("style") == "color: blue"


def test_undo_hide_in_shadow_root():
    session = _session()
    inner = query_first(session.document, ".inner")
    session.commit([inner], PatchKind.HIDE)
    assert "display: none" in inner.get("style")

    session.undo_last()

    assert "style" not in inner.attrib


def test_undo_one_aspect_keeps_patched_flag_for_others():
    session = _session()
    price = session.document.get_element_by_id("price")
    session.commit([price], PatchKind.SET_TEXT, "$12")
    session.commit([price], PatchKind.HIDE)

    session.undo_last()

    assert price.get(PATCHED_ATTR) == "1"
    assert "data-pagepatch-hide" not in price.attrib
    assert [p.kind for p in session.patches] == [PatchKind.SET_TEXT]


def test_undo_remove_reinserts_markup():
    session = _session()
    doc = session.document
    two = doc.query_first("li.b")
    session.commit([two], PatchKind.REMOVE)
    assert [li.text for li in doc.query_all("li")] == ["One"]

    result = session.undo_last()

    assert result.restored == 1
    assert [li.text for li in doc.query_all("li")] == ["One", "Two"]
    assert session.patches == []


def test_undo_remove_keeps_shadow_root_of_removed_host():
    session = _session()
    doc = session.document
    session.commit([doc.get_element_by_id("card")], PatchKind.REMOVE)
    assert query_first(doc, ".inner") is None

    session.undo_last()

    assert query_first(doc, ".inner").text == "Offer"


def test_undo_remove_without_parent_is_skipped():
    session = _session()
    doc = session.document
    session.commit([doc.query_first("li.b")], PatchKind.REMOVE)
    doc.detach(doc.get_element_by_id("list"))

    result = session.undo_last()

    assert result.restored == 0
    assert result.skipped == 1
    assert session.patches == []


def test_undo_re_resolves_replaced_node():
    session = _session()
    doc = session.document
    session.commit([doc.get_element_by_id("price")], PatchKind.SET_TEXT, "$12")
    doc.set_html(doc.query_first(".product"), '<span id="price">$12</span>')

    assert session.undo_last().restored == 1
    assert doc.get_element_by_id("price").text == "$10"


def test_one_group_per_commit():
    session = _session()
    doc = session.document
    items = doc.query_all("li")
    session.commit(items, PatchKind.SET_TEXT, "Same")

    result = session.undo_last()

    assert result.restored == 2
    assert [li.text for li in doc.query_all("li")] == ["One", "Two"]
    assert session.undo_last() is None


def test_capacity_drops_oldest_group():
    doc = Document.from_html(PAGE)
    store = PatchStore(Scope.FULL, "about:blank")
    undo = UndoManager(doc, LocatorResolver(doc), store, capacity=3)

    for i in range(5):
        undo.push(PatchGroup([UndoEntry(CssLocator("#price"), PatchKind.SET_TEXT, None, str(i))]))
    undo.push(PatchGroup())

    assert len(undo) == 3
    undo.undo_last()
    assert doc.get_element_by_id("price").text == "4"


def test_capture_pre_image_per_kind():
    doc = Document.from_html(PAGE)
    lead = doc.get_element_by_id("lead")
    hero = doc.get_element_by_id("hero")
    locator = CssLocator("#lead")

    assert capture_pre_image(doc, lead, locator, PatchKind.SET_TEXT).pre_image == "Lead text"
    assert capture_pre_image(doc, lead, locator, PatchKind.HIDE).pre_image == "color: blue"
    assert capture_pre_image(doc, hero, locator, PatchKind.SET_ATTRIBUTE, "alt").pre_image is None
    assert capture_pre_image(doc, hero, locator, PatchKind.HIDE).pre_image == ""

    entry = capture_pre_image(doc, hero, locator, PatchKind.REMOVE)
    assert entry.pre_image.startswith("<img")
    assert entry.parent is doc.body
