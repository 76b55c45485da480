#!/usr/bin/env python3
"""
Shadow DOM Patching Example
===========================

This example edits nodes that live inside shadow roots, which ordinary
selector queries cannot see, and shows the edits coming back on a fresh
copy of the page.

Usage:
    python examples/shadow_dom_patching.py
"""

from pagepatch import PatchSession
from pagepatch.layers.memory import MemoryStorage, PatchKind
from pagepatch.layers.sense import Document
from pagepatch.layers.sense.document import query_first


PAGE = """
<html>
  <body>
    <h1>Item</h1>
    <span id="price">$10</span>
    <product-card class="card">
      <template shadowrootmode="open">
        <div class="inner">Limited offer!</div>
        <button>Buy</button>
      </template>
    </product-card>
  </body>
</html>
"""

ADDRESS = "https://shop.example/item?id=4"


def main():
    """Edit, reload, reconcile."""

    print("=" * 60)
    print("🩹 pagepatch - Shadow DOM Patching")
    print("=" * 60)
    print()

    storage = MemoryStorage()

    # First visit: the operator makes two edits
    document = Document.from_html(PAGE, address=ADDRESS)
    session = PatchSession(document, storage)
    session.activate()

    print(f"Direct query for .inner: {document.query_first('.inner')}")
    inner = query_first(document, ".inner")
    print(f"Piercing query for .inner: <{inner.tag}>")
    print(f"Locator: {session.synthesize(inner)}")
    print()

    session.commit([document.get_element_by_id("price")], PatchKind.SET_TEXT, "$12")
    session.commit([inner], PatchKind.HIDE)
    session.deactivate()

    print("Saved patches:")
    for patch in session.patches:
        print(f"  - {patch}")
    print()

    # Second visit: a fresh copy of the page
    fresh = Document.from_html(PAGE, address=ADDRESS)
    reloaded = PatchSession(fresh, storage)
    reloaded.activate()
    report = reloaded.apply_all()

    print(f"Reconciliation: {report.applied} applied, {report.skipped} skipped")
    print(f"Price now reads: {fresh.get_element_by_id('price').text}")
    print(f"Offer style: {query_first(fresh, '.inner').get('style')}")


if __name__ == "__main__":
    main()
