"""
Unit tests for PatchApplier: idempotence, markers, and error isolation.
"""

from unittest.mock import patch

import pytest

from pagepatch.core.scope import Scope
from pagepatch.layers.action.applier import ApplyStatus, PatchApplier
from pagepatch.layers.memory.patches import PATCHED_ATTR, PENDING_ATTR, Patch, PatchKind, value_digest
from pagepatch.layers.memory.store import PatchStore
from pagepatch.layers.sense.document import RESERVED_ROOT_ID, Document
from pagepatch.layers.sense.locator import CssLocator, ShadowLocator
from pagepatch.layers.sense.resolver import LocatorResolver
from pagepatch.layers.sense.styles import InlineStyle


PAGE = """
<html><body>
  <div class="product"><span id="price" data-pagepatch-pending="1">$10</span></div>
  <p id="lead" style="color: blue">Lead</p>
  <img id="hero" src="a.png" alt="Hero">
  <ul id="list"><li>A</li><li>B</li></ul>
  <x-card id="card"><template shadowrootmode="open"><div class="inner">Offer</div></template></x-card>
</body></html>
"""


def _setup(*patches, markup=PAGE):
    doc = Document.from_html(markup)
    store = PatchStore(Scope.FULL, "about:blank")
    for p in patches:
        store.upsert(p)
    return doc, store, PatchApplier(doc, LocatorResolver(doc), store)


def _count_writes(doc):
    records = []
    doc.observe(records.append)
    return records


def test_set_text_and_markers():
    doc, store, applier = _setup(Patch(CssLocator("#price"), PatchKind.SET_TEXT, "$12"))

    report = applier.apply_all()

    price = doc.get_element_by_id("price")
    assert report.applied == 1
    assert price.text == "$12"
    assert price.get("data-pagepatch-text") == value_digest("$12")
    assert price.get(PATCHED_ATTR) == "1"
    assert PENDING_ATTR not in price.attrib


def test_second_pass_performs_no_writes():
    """Re-applying over an unchanged tree changes nothing and emits nothing."""
    doc, store, applier = _setup(
        Patch(CssLocator("#price"), PatchKind.SET_TEXT, "$12"),
        Patch(CssLocator("#lead"), PatchKind.SET_HTML, "<b>Sale</b> now"),
        Patch(CssLocator("#hero"), PatchKind.SET_ATTRIBUTE, "b.png", "src"),
        Patch(CssLocator("#hero"), PatchKind.SET_ATTRIBUTE, "", "alt"),
        Patch(CssLocator("#lead"), PatchKind.APPEND_STYLE, "color: red; margin: 0"),
        Patch(CssLocator(".inner"), PatchKind.HIDE),
    )
    first = applier.apply_all()
    assert first.applied == 6

    records = _count_writes(doc)
    second = applier.apply_all()

    assert second.applied == 0
    assert second.skipped == 6
    assert all(r.reason == "Already applied" for r in second.results)
    assert records == []


def test_reapplies_when_effect_was_reverted():
    """The marker alone does not count; the node must still show the edit."""
    doc, store, applier = _setup(Patch(CssLocator("#price"), PatchKind.SET_TEXT, "$12"))
    applier.apply_all()
    price = doc.get_element_by_id("price")

    price.text = "$10"
    report = applier.apply_all()

    assert report.applied == 1
    assert price.text == "$12"


def test_rerendered_node_is_patched():
    doc, store, applier = _setup(Patch(CssLocator("#price"), PatchKind.SET_TEXT, "$12"))
    applier.apply_all()

    product = doc.query_first(".product")
    doc.set_html(product, '<span id="price">$10</span>')
    report = applier.apply_all()

    assert report.applied == 1
    assert doc.get_element_by_id("price").text == "$12"


def test_attribute_set_and_remove():
    doc, store, applier = _setup(
        Patch(CssLocator("#hero"), PatchKind.SET_ATTRIBUTE, "b.png", "src"),
        Patch(CssLocator("#hero"), PatchKind.SET_ATTRIBUTE, "", "alt"),
    )
    applier.apply_all()
    hero = doc.get_element_by_id("hero")

    assert hero.get("src") == "b.png"
    assert "alt" not in hero.attrib
    assert hero.get("data-pagepatch-attr-src") == value_digest("b.png")
    assert hero.get("data-pagepatch-attr-alt") == value_digest("")


def test_attribute_patch_without_name_is_skipped_not_deleted():
    doc, store, applier = _setup(Patch(CssLocator("#hero"), PatchKind.SET_ATTRIBUTE, "x"))

    result = applier.apply_all().results[0]

    assert result.status is ApplyStatus.SKIPPED
    assert "attribute name" in result.reason
    assert len(store) == 1


def test_append_style_keeps_existing_declarations():
    doc, store, applier = _setup(Patch(CssLocator("#lead"), PatchKind.APPEND_STYLE, "margin: 0 !important"))
    applier.apply_all()

    style = InlineStyle.parse(doc.get_element_by_id("lead").get("style"))
    assert style.get("color") == "blue"
    assert style.get("margin") == "0"
    assert style.is_important("margin")


def test_replace_style_discards_existing_declarations():
    doc, store, applier = _setup(Patch(CssLocator("#lead"), PatchKind.REPLACE_STYLE, "font-weight: bold"))
    applier.apply_all()

    assert doc.get_element_by_id("lead").get("style") == "font-weight: bold !important;"


def test_replace_style_with_empty_value_clears_style():
    doc, store, applier = _setup(Patch(CssLocator("#lead"), PatchKind.REPLACE_STYLE, ""))

    assert applier.apply_all().applied == 1
    assert "style" not in doc.get_element_by_id("lead").attrib
    assert applier.apply_all().skipped == 1


def test_style_without_valid_declaration_is_malformed():
    doc, store, applier = _setup(Patch(CssLocator("#lead"), PatchKind.APPEND_STYLE, "bogus"))

    result = applier.apply_all().results[0]

    assert result.status is ApplyStatus.SKIPPED
    assert doc.get_element_by_id("lead").get("style") == "color: blue"


def test_hide_from_reconciliation_and_direct():
    doc, store, applier = _setup(Patch(CssLocator(".inner"), PatchKind.HIDE))
    applier.apply_all()
    inner = doc.shadow_root(doc.get_element_by_id("card")).query_first(".inner")

    style = InlineStyle.parse(inner.get("style"))
    assert style.get("display") == "none"
    assert style.get("visibility") == "hidden"
    assert "opacity" not in style

    doc2, store2, applier2 = _setup()
    node = doc2.get_element_by_id("price")
    applier2.apply_to(node, Patch(CssLocator("#price"), PatchKind.HIDE), direct=True)
    assert InlineStyle.parse(node.get("style")).get("opacity") == "0"


def test_shadow_locator_patch():
    doc, store, applier = _setup(Patch(ShadowLocator(("#card",), "div.inner"), PatchKind.SET_TEXT, "Gone"))

    assert applier.apply_all().applied == 1
    assert doc.shadow_root(doc.get_element_by_id("card")).query_first(".inner").text == "Gone"


def test_unresolved_and_ambiguous_are_skipped():
    doc, store, applier = _setup(
        Patch(CssLocator("#missing"), PatchKind.SET_TEXT, "x"),
        Patch(CssLocator("li"), PatchKind.SET_TEXT, "x"),
    )
    records = _count_writes(doc)

    report = applier.apply_all()

    assert report.skipped == 2
    assert "matched 2 nodes" in report.results[1].reason
    assert [li.text for li in doc.query_all("li")] == ["A", "B"]
    assert records == []


def test_non_addressable_target_is_skipped():
    markup = f'<html><body><div id="{RESERVED_ROOT_ID}"><p id="tool">x</p></div></body></html>'
    doc, store, applier = _setup(Patch(CssLocator("#tool"), PatchKind.SET_TEXT, "y"), markup=markup)

    assert applier.apply_all().skipped == 1
    assert doc.get_element_by_id("tool").text == "x"


def test_mutation_failure_does_not_stop_the_pass():
    doc, store, applier = _setup(
        Patch(CssLocator("#price"), PatchKind.SET_TEXT, "$12"),
        Patch(CssLocator("#lead"), PatchKind.SET_ATTRIBUTE, "t", "title"),
    )

    with patch.object(doc, "set_text", side_effect=RuntimeError("boom")):
        report = applier.apply_all()

    assert report.failed == 1
    assert report.applied == 1
    assert "boom" in report.results[0].reason
    assert doc.get_element_by_id("lead").get("title") == "t"
    assert PATCHED_ATTR not in doc.get_element_by_id("price").attrib


def test_remove_does_not_cascade_to_next_sibling():
    doc, store, applier = _setup(Patch(CssLocator("li:nth-of-type(1)"), PatchKind.REMOVE))

    assert applier.apply_all().applied == 1
    assert [li.text for li in doc.query_all("li")] == ["B"]

    # "B" is now the first li but is not the node that was removed
    second = applier.apply_all()
    assert second.skipped == 1
    assert [li.text for li in doc.query_all("li")] == ["B"]

    # A re-render that brings "A" back gets it removed again
    doc.set_html(doc.get_element_by_id("list"), "<li>A</li><li>B</li>")
    assert applier.apply_all().applied == 1
    assert [li.text for li in doc.query_all("li")] == ["B"]


def test_reentrant_pass_is_ignored():
    doc, store, applier = _setup(Patch(CssLocator("#price"), PatchKind.SET_TEXT, "$12"))
    nested = []
    doc.observe(lambda record: nested.append(applier.apply_all()))

    report = applier.apply_all()

    assert report.applied == 1
    assert nested
    assert all(r.total == 0 for r in nested)


def test_reset_forgets_removal_fingerprints():
    doc, store, applier = _setup(Patch(CssLocator("li:nth-of-type(1)"), PatchKind.REMOVE))
    applier.apply_all()

    applier.reset()

    assert applier.apply_all().applied == 1
    assert doc.query_all("li") == []


@pytest.mark.parametrize("kind, value", [
    (PatchKind.SET_TEXT, "$12"),
    (PatchKind.SET_HTML, "<i>new</i>"),
    (PatchKind.HIDE, ""),
])
def test_is_current_requires_marker(kind, value):
    doc, store, applier = _setup()
    node = doc.get_element_by_id("price")
    p = Patch(CssLocator("#price"), kind, value)

    assert not applier.is_current(node, p)
    applier.apply_to(node, p)
    assert applier.is_current(node, p)
